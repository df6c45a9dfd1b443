"""Database layer for the Property Finder back-office."""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import config

LISTING_COLUMNS = (
    "id", "reference", "permit_number", "location_name", "location_id", "title",
    "description", "property_type", "bedrooms", "bathrooms", "size", "price",
    "agent_name", "status", "pf_listing_id", "pf_listing_url", "error_message",
    "created_at", "published_at", "extra_data",
)


def get_conn(db_path: Optional[str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path or config.DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def connection(conn: Optional[sqlite3.Connection] = None):
    """Yield the given connection, or open (and later close) a fresh one."""
    if conn is not None:
        yield conn
        return
    conn = get_conn()
    try:
        yield conn
    finally:
        conn.close()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db(db_path: Optional[str] = None):
    conn = get_conn(db_path)
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS settings (
            key             TEXT PRIMARY KEY,
            value           TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS user_settings (
            account_id      TEXT PRIMARY KEY,
            api_key         TEXT NOT NULL DEFAULT '',
            api_secret      TEXT NOT NULL DEFAULT '',
            license_number  TEXT NOT NULL DEFAULT '',
            agents          TEXT NOT NULL DEFAULT '[]',
            updated_at      TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS listings (
            id              TEXT PRIMARY KEY,
            reference       TEXT NOT NULL UNIQUE,
            permit_number   TEXT NOT NULL,
            location_name   TEXT,
            location_id     INTEGER,
            title           TEXT NOT NULL,
            description     TEXT,
            property_type   TEXT,
            bedrooms        TEXT,
            bathrooms       TEXT,
            size            TEXT,
            price           TEXT,
            agent_name      TEXT,
            status          TEXT NOT NULL DEFAULT 'draft',
            pf_listing_id   TEXT,
            pf_listing_url  TEXT,
            error_message   TEXT,
            created_at      TEXT NOT NULL,
            published_at    TEXT,
            extra_data      TEXT NOT NULL DEFAULT '{}'
        );

        CREATE TABLE IF NOT EXISTS leads (
            id                  TEXT PRIMARY KEY,
            account_id          TEXT NOT NULL,
            listing_reference   TEXT,
            location_name       TEXT,
            lead_type           TEXT,
            lead_date           TEXT,
            client_name         TEXT,
            client_phone        TEXT,
            client_email        TEXT,
            status              TEXT,
            notes               TEXT,
            synced_at           TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS image_folders (
            location_name   TEXT PRIMARY KEY,
            folder_path     TEXT NOT NULL,
            image_count     INTEGER NOT NULL DEFAULT 0,
            last_used_index INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS images (
            id              TEXT PRIMARY KEY,
            name            TEXT NOT NULL,
            location_name   TEXT NOT NULL,
            storage_key     TEXT NOT NULL,
            s3_url          TEXT NOT NULL,
            cdn_url         TEXT NOT NULL,
            uploaded_at     TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS templates (
            id              TEXT PRIMARY KEY,
            name            TEXT NOT NULL,
            type            TEXT NOT NULL,
            category        TEXT NOT NULL,
            subject         TEXT,
            content         TEXT NOT NULL,
            variables       TEXT NOT NULL DEFAULT '[]',
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS scraper_results (
            seq             INTEGER PRIMARY KEY AUTOINCREMENT,
            data            TEXT NOT NULL,
            appended_at     TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_listings_status ON listings(status);
        CREATE INDEX IF NOT EXISTS idx_leads_reference ON leads(listing_reference);
        CREATE INDEX IF NOT EXISTS idx_images_location ON images(location_name);
        CREATE INDEX IF NOT EXISTS idx_templates_type ON templates(type);
    """)
    for key, value in config.DEFAULT_SETTINGS.items():
        conn.execute(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
    conn.commit()
    conn.close()


# ── Settings ──────────────────────────────────────────────────

def get_setting(key: str, default: Any = None, conn: Optional[sqlite3.Connection] = None) -> Any:
    with connection(conn) as c:
        row = c.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    if row is None:
        return config.DEFAULT_SETTINGS.get(key, default)
    return json.loads(row["value"])


def set_setting(key: str, value: Any, conn: Optional[sqlite3.Connection] = None):
    with connection(conn) as c:
        c.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, json.dumps(value)),
        )
        c.commit()


def get_all_settings(conn: Optional[sqlite3.Connection] = None) -> dict:
    settings = dict(config.DEFAULT_SETTINGS)
    with connection(conn) as c:
        for row in c.execute("SELECT key, value FROM settings").fetchall():
            settings[row["key"]] = json.loads(row["value"])
    return settings


# ── User settings (credentials) ────────────────────────────────

def get_user_settings(account_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[dict]:
    with connection(conn) as c:
        row = c.execute(
            "SELECT * FROM user_settings WHERE account_id = ?", (account_id,)
        ).fetchone()
    if row is None:
        return None
    result = dict(row)
    result["agents"] = json.loads(result["agents"] or "[]")
    return result


def save_user_settings(account_id: str, api_key: str, api_secret: str,
                       license_number: str, agents: list[dict],
                       conn: Optional[sqlite3.Connection] = None):
    """Overwrite the stored settings for an account."""
    with connection(conn) as c:
        c.execute("""
            INSERT INTO user_settings (account_id, api_key, api_secret, license_number, agents, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                api_key = excluded.api_key,
                api_secret = excluded.api_secret,
                license_number = excluded.license_number,
                agents = excluded.agents,
                updated_at = excluded.updated_at
        """, (account_id, api_key, api_secret, license_number, json.dumps(agents), now_iso()))
        c.commit()


# ── Listings ──────────────────────────────────────────────────

def _listing_row(row: sqlite3.Row) -> dict:
    result = dict(row)
    result["extra_data"] = json.loads(result.get("extra_data") or "{}")
    return result


def insert_listing(data: dict, conn: Optional[sqlite3.Connection] = None):
    """Insert a listing row. Raises sqlite3.IntegrityError on a duplicate reference."""
    values = {col: data.get(col) for col in LISTING_COLUMNS}
    values["extra_data"] = json.dumps(data.get("extra_data") or {})
    placeholders = ", ".join("?" for _ in LISTING_COLUMNS)
    with connection(conn) as c:
        c.execute(
            f"INSERT INTO listings ({', '.join(LISTING_COLUMNS)}) VALUES ({placeholders})",
            tuple(values[col] for col in LISTING_COLUMNS),
        )
        c.commit()


def update_listing(listing_id: str, fields: dict, conn: Optional[sqlite3.Connection] = None) -> bool:
    updates = {k: v for k, v in fields.items() if k in LISTING_COLUMNS and k != "id"}
    if not updates:
        return False
    if "extra_data" in updates:
        updates["extra_data"] = json.dumps(updates["extra_data"] or {})
    assignments = ", ".join(f"{col} = ?" for col in updates)
    with connection(conn) as c:
        cursor = c.execute(
            f"UPDATE listings SET {assignments} WHERE id = ?",
            (*updates.values(), listing_id),
        )
        c.commit()
    return cursor.rowcount > 0


def get_listing(listing_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[dict]:
    with connection(conn) as c:
        row = c.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
    return _listing_row(row) if row else None


def get_listing_by_reference(reference: str, conn: Optional[sqlite3.Connection] = None) -> Optional[dict]:
    with connection(conn) as c:
        row = c.execute("SELECT * FROM listings WHERE reference = ?", (reference,)).fetchone()
    return _listing_row(row) if row else None


def get_listings(status: Optional[str] = None, conn: Optional[sqlite3.Connection] = None) -> list[dict]:
    with connection(conn) as c:
        if status:
            rows = c.execute(
                "SELECT * FROM listings WHERE status = ? ORDER BY created_at, rowid", (status,)
            ).fetchall()
        else:
            rows = c.execute("SELECT * FROM listings ORDER BY created_at, rowid").fetchall()
    return [_listing_row(row) for row in rows]


def delete_listing(listing_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
    with connection(conn) as c:
        cursor = c.execute("DELETE FROM listings WHERE id = ?", (listing_id,))
        c.commit()
    return cursor.rowcount > 0


def count_listings(conn: Optional[sqlite3.Connection] = None) -> int:
    with connection(conn) as c:
        return c.execute("SELECT COUNT(*) AS c FROM listings").fetchone()["c"]


# ── Leads ─────────────────────────────────────────────────────

def upsert_lead(lead: dict, conn: Optional[sqlite3.Connection] = None) -> bool:
    """Insert or update a lead. Returns True if this is a new lead."""
    with connection(conn) as c:
        existing = c.execute("SELECT id FROM leads WHERE id = ?", (lead["id"],)).fetchone()
        c.execute("""
            INSERT INTO leads (id, account_id, listing_reference, location_name, lead_type,
                               lead_date, client_name, client_phone, client_email, status,
                               notes, synced_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                listing_reference = excluded.listing_reference,
                location_name = excluded.location_name,
                lead_type = excluded.lead_type,
                lead_date = excluded.lead_date,
                client_name = excluded.client_name,
                client_phone = excluded.client_phone,
                client_email = excluded.client_email,
                status = excluded.status,
                notes = COALESCE(excluded.notes, notes),
                synced_at = excluded.synced_at
        """, (
            lead["id"],
            lead["account_id"],
            lead.get("listing_reference"),
            lead.get("location_name"),
            lead.get("lead_type"),
            lead.get("lead_date"),
            lead.get("client_name"),
            lead.get("client_phone"),
            lead.get("client_email"),
            lead.get("status"),
            lead.get("notes"),
            now_iso(),
        ))
        c.commit()
    return existing is None


def get_leads(account_id: Optional[str] = None, listing_reference: Optional[str] = None,
              conn: Optional[sqlite3.Connection] = None) -> list[dict]:
    where_clauses = []
    params = []
    if account_id:
        where_clauses.append("account_id = ?")
        params.append(account_id)
    if listing_reference:
        where_clauses.append("listing_reference = ?")
        params.append(listing_reference)
    where = " AND ".join(where_clauses) if where_clauses else "1=1"
    with connection(conn) as c:
        rows = c.execute(
            f"SELECT * FROM leads WHERE {where} ORDER BY lead_date DESC", params
        ).fetchall()
    return [dict(row) for row in rows]


# ── Images ────────────────────────────────────────────────────

def insert_image(image: dict, folder_path: str, conn: Optional[sqlite3.Connection] = None):
    """Store an image record and bump its location folder count in one transaction."""
    with connection(conn) as c:
        c.execute("""
            INSERT INTO images (id, name, location_name, storage_key, s3_url, cdn_url, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            image["id"], image["name"], image["location_name"], image["storage_key"],
            image["s3_url"], image["cdn_url"], image["uploaded_at"],
        ))
        c.execute("""
            INSERT INTO image_folders (location_name, folder_path, image_count, last_used_index)
            VALUES (?, ?, 1, 0)
            ON CONFLICT(location_name) DO UPDATE SET image_count = image_count + 1
        """, (image["location_name"], folder_path))
        c.commit()


def get_images(location_name: Optional[str] = None, conn: Optional[sqlite3.Connection] = None) -> list[dict]:
    with connection(conn) as c:
        if location_name:
            rows = c.execute(
                "SELECT * FROM images WHERE location_name = ? ORDER BY uploaded_at, rowid",
                (location_name,),
            ).fetchall()
        else:
            rows = c.execute("SELECT * FROM images ORDER BY uploaded_at, rowid").fetchall()
    return [dict(row) for row in rows]


def get_image_folder(location_name: str, conn: Optional[sqlite3.Connection] = None) -> Optional[dict]:
    with connection(conn) as c:
        row = c.execute(
            "SELECT * FROM image_folders WHERE location_name = ?", (location_name,)
        ).fetchone()
    return dict(row) if row else None


def advance_folder_index(location_name: str, conn: Optional[sqlite3.Connection] = None) -> int:
    """Move a folder's rotation index forward and return the new value."""
    with connection(conn) as c:
        c.execute("""
            UPDATE image_folders
            SET last_used_index = (last_used_index + 1) % image_count
            WHERE location_name = ? AND image_count > 0
        """, (location_name,))
        c.commit()
        row = c.execute(
            "SELECT last_used_index FROM image_folders WHERE location_name = ?", (location_name,)
        ).fetchone()
    return row["last_used_index"] if row else 0


# ── Templates ─────────────────────────────────────────────────

def _template_row(row: sqlite3.Row) -> dict:
    result = dict(row)
    result["variables"] = json.loads(result.get("variables") or "[]")
    return result


def upsert_template(template: dict, conn: Optional[sqlite3.Connection] = None):
    with connection(conn) as c:
        c.execute("""
            INSERT INTO templates (id, name, type, category, subject, content, variables,
                                   created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                type = excluded.type,
                category = excluded.category,
                subject = excluded.subject,
                content = excluded.content,
                variables = excluded.variables,
                updated_at = excluded.updated_at
        """, (
            template["id"], template["name"], template["type"], template["category"],
            template.get("subject"), template["content"], json.dumps(template.get("variables", [])),
            template["created_at"], template["updated_at"],
        ))
        c.commit()


def get_template(template_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[dict]:
    with connection(conn) as c:
        row = c.execute("SELECT * FROM templates WHERE id = ?", (template_id,)).fetchone()
    return _template_row(row) if row else None


def get_templates(template_type: Optional[str] = None, category: Optional[str] = None,
                  conn: Optional[sqlite3.Connection] = None) -> list[dict]:
    where_clauses = []
    params = []
    if template_type:
        where_clauses.append("type = ?")
        params.append(template_type)
    if category:
        where_clauses.append("category = ?")
        params.append(category)
    where = " AND ".join(where_clauses) if where_clauses else "1=1"
    with connection(conn) as c:
        rows = c.execute(
            f"SELECT * FROM templates WHERE {where} ORDER BY created_at, rowid", params
        ).fetchall()
    return [_template_row(row) for row in rows]


def delete_template(template_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
    with connection(conn) as c:
        cursor = c.execute("DELETE FROM templates WHERE id = ?", (template_id,))
        c.commit()
    return cursor.rowcount > 0


# ── Scraper results (master list) ──────────────────────────────

def append_scraper_results(records: list[dict], conn: Optional[sqlite3.Connection] = None) -> int:
    """Append records to the master list. No deduplication."""
    now = now_iso()
    with connection(conn) as c:
        c.executemany(
            "INSERT INTO scraper_results (data, appended_at) VALUES (?, ?)",
            [(json.dumps(record), now) for record in records],
        )
        c.commit()
    return len(records)


def get_scraper_results(conn: Optional[sqlite3.Connection] = None) -> list[dict]:
    with connection(conn) as c:
        rows = c.execute("SELECT data FROM scraper_results ORDER BY seq").fetchall()
    return [json.loads(row["data"]) for row in rows]


def clear_scraper_results(conn: Optional[sqlite3.Connection] = None) -> int:
    with connection(conn) as c:
        cursor = c.execute("DELETE FROM scraper_results")
        c.commit()
    return cursor.rowcount
