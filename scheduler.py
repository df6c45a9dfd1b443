"""Background leads sync and its scheduler."""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

import config
import db
from credentials import get_credential
from errors import PropertyFinderError
from models import Credential, Lead
from pf_client import PropertyFinderClient

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None
_lock = threading.Lock()
_last_result: Optional[dict] = None
_is_running = False

MAX_LEAD_PAGES = 100


def _lead_from_api(raw: dict, account_id: str) -> Lead:
    """Map an upstream lead record; field names vary between lead channels."""
    listing = raw.get("listing") or {}
    sender = raw.get("sender") or raw.get("contact") or {}
    location = listing.get("location") or {}
    return Lead(
        id=str(raw["id"]),
        account_id=account_id,
        listing_reference=listing.get("reference") or raw.get("listingReference") or "",
        location_name=location.get("name") or raw.get("locationName") or "",
        lead_type=raw.get("channel") or raw.get("type") or "",
        lead_date=raw.get("createdAt") or raw.get("leadDate") or "",
        client_name=sender.get("name") or raw.get("clientName") or "",
        client_phone=sender.get("phone") or raw.get("clientPhone") or "",
        client_email=sender.get("email") or raw.get("clientEmail") or "",
        status=raw.get("status") or "",
        notes=raw.get("notes"),
    )


def _sync_account(client: PropertyFinderClient, credential: Credential, page_size: int) -> tuple[int, int]:
    """Pull every leads page for one account. Returns (fetched, new)."""
    token = client.token_for(credential)

    fetched = new = 0
    for page in range(1, MAX_LEAD_PAGES + 1):
        leads, total = client.get_leads(token, page=page, limit=page_size)
        for raw in leads:
            if raw.get("id") is None:
                continue
            lead = _lead_from_api(raw, credential.account_id)
            if db.upsert_lead(vars(lead)):
                new += 1
            fetched += 1
        if not leads or page * page_size >= total:
            break
    return fetched, new


def sync_leads(client: PropertyFinderClient, account_ids: Optional[list[str]] = None) -> dict:
    """Fetch leads for each account and store them keyed by upstream id.

    Accounts without credentials are skipped. A failing account is logged
    and counted; the others still sync.
    """
    if account_ids is None:
        account_ids = [a["id"] for a in config.ACCOUNTS]
    page_size = int(db.get_setting("leads_page_size", 50))

    result = {"accounts": 0, "fetched": 0, "new": 0, "skipped": 0, "errors": 0}
    for account_id in account_ids:
        try:
            credential = get_credential(account_id)
            if not credential.api_key or not credential.api_secret:
                logger.info(f"Skipping leads sync for {account_id}: no credentials")
                result["skipped"] += 1
                continue
            fetched, new = _sync_account(client, credential, page_size)
        except PropertyFinderError as e:
            logger.error(f"Leads sync failed for {account_id}: {e}")
            result["errors"] += 1
            continue
        logger.info(f"  {account_id}: {fetched} leads ({new} new)")
        result["accounts"] += 1
        result["fetched"] += fetched
        result["new"] += new

    result["finished_at"] = datetime.now(timezone.utc).isoformat()
    return result


def _make_client() -> PropertyFinderClient:
    return PropertyFinderClient()


def run_sync(account_ids: Optional[list[str]] = None) -> dict:
    """Run one leads sync. Shared between CLI, API and scheduler."""
    global _last_result, _is_running

    with _lock:
        if _is_running:
            return {"error": "Leads sync already in progress"}
        _is_running = True

    try:
        result = sync_leads(_make_client(), account_ids)
        _last_result = result
        logger.info(f"Leads sync done: {result}")
        return result
    finally:
        with _lock:
            _is_running = False


def _sync_job():
    """APScheduler job wrapper."""
    logger.info("Scheduled leads sync starting...")
    run_sync()


def start_scheduler(interval_hours: Optional[float] = None):
    """Start the background scheduler."""
    global _scheduler

    with _lock:
        if _scheduler and _scheduler.running:
            _scheduler.shutdown(wait=False)

        if interval_hours is None:
            interval_hours = db.get_setting("leads_sync_interval_hours", 1)

        _scheduler = BackgroundScheduler()
        _scheduler.add_job(
            _sync_job,
            "interval",
            hours=interval_hours,
            id="leads_sync_job",
            replace_existing=True,
        )
        _scheduler.start()
        db.set_setting("leads_sync_enabled", True)
        logger.info(f"Scheduler started: syncing leads every {interval_hours}h")


def stop_scheduler(disable: bool = True):
    """Stop the background scheduler.

    Set disable=False to stop only in-memory scheduling without changing the
    persisted setting (used on shutdown).
    """
    global _scheduler

    with _lock:
        if _scheduler and _scheduler.running:
            _scheduler.shutdown(wait=False)
            _scheduler = None
        if disable:
            db.set_setting("leads_sync_enabled", False)
        logger.info("Scheduler stopped")


def trigger_now() -> dict:
    """Trigger an immediate leads sync in a background thread."""
    if _is_running:
        return {"error": "Leads sync already in progress"}
    thread = threading.Thread(target=run_sync, daemon=True)
    thread.start()
    return {"status": "triggered"}


def get_status() -> dict:
    running = _scheduler is not None and _scheduler.running

    status = {
        "running": running,
        "syncing": _is_running,
        "last_result": _last_result,
    }

    if running:
        job = _scheduler.get_job("leads_sync_job")
        if job and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()
        status["interval_hours"] = db.get_setting("leads_sync_interval_hours", 1)

    return status
