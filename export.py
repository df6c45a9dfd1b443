"""CSV export and the persisted master list of scrape results."""

import csv
import io
import logging
import re
import sqlite3
from datetime import date
from typing import Optional, Union

import db
from models import ScrapedProperty

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    ("ID", "id"),
    ("Title", "title"),
    ("Price", "price"),
    ("Location", "location"),
    ("Bedrooms", "bedrooms"),
    ("Bathrooms", "bathrooms"),
    ("Size", "size"),
    ("Property Type", "property_type"),
    ("Agent", "agent"),
    ("Verified", "verified"),
    ("Permit Number", "permit_number"),
    ("Reference Number", "reference_number"),
    ("Completion Date", "completion_date"),
    ("Furnishing", "furnishing"),
    ("Page", "page_number"),
    ("Position", "position_on_page"),
    ("URL", "url"),
]

Record = Union[ScrapedProperty, dict]


def _as_dict(record: Record) -> dict:
    return record.to_dict() if isinstance(record, ScrapedProperty) else dict(record)


def export_csv(records: list[Record]) -> bytes:
    """Serialize records to CSV. Values with commas, quotes or newlines get quoted."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow([header for header, _ in EXPORT_COLUMNS])
    for record in records:
        data = _as_dict(record)
        row = []
        for _, key in EXPORT_COLUMNS:
            value = data.get(key)
            if value is None:
                value = ""
            elif isinstance(value, bool):
                value = "yes" if value else "no"
            row.append(value)
        writer.writerow(row)
    return buf.getvalue().encode("utf-8")


def export_filename(location: str, day: Optional[date] = None) -> str:
    day = day or date.today()
    slug = re.sub(r"[^a-z0-9]+", "-", str(location).lower()).strip("-") or "all"
    return f"property_finder_{slug}_{day.isoformat()}.csv"


def append_to_master(records: list[Record], conn: Optional[sqlite3.Connection] = None) -> int:
    """Add records to the master list. Repeated appends accumulate duplicates."""
    count = db.append_scraper_results([_as_dict(r) for r in records], conn=conn)
    logger.info(f"Appended {count} records to master list")
    return count


def get_master_results(conn: Optional[sqlite3.Connection] = None) -> list[dict]:
    return db.get_scraper_results(conn=conn)


def clear_master_results(conn: Optional[sqlite3.Connection] = None) -> int:
    return db.clear_scraper_results(conn=conn)
