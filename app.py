"""FastAPI backend for the Property Finder back-office."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

import config
import credentials
import csv_import
import db
import export
import images
import listings
import scheduler
import templating
from errors import (
    AuthError,
    ConfigurationError,
    DuplicateReferenceError,
    InvalidListingStateError,
    NotFoundError,
    PropertyFinderError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from models import Agent, Credential
from pf_client import PropertyFinderClient
from scraper import PropertyScraper, ScrapeParams

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    ConfigurationError: 400,
    AuthError: 401,
    NotFoundError: 404,
    DuplicateReferenceError: 409,
    InvalidListingStateError: 409,
    UpstreamError: 502,
    TransportError: 504,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    db.init_db()
    seeded = templating.seed_default_templates()
    if seeded:
        logger.info(f"Seeded {seeded} default templates")
    if db.get_setting("leads_sync_enabled", False):
        scheduler.start_scheduler()
    yield
    scheduler.stop_scheduler(disable=False)


app = FastAPI(title="Property Finder Back-Office", lifespan=lifespan)

_client: Optional[PropertyFinderClient] = None


def get_client() -> PropertyFinderClient:
    """Shared upstream client, so cached tokens survive between requests."""
    global _client
    if _client is None:
        _client = PropertyFinderClient(publish_url_delay=float(db.get_setting("publish_url_delay", 3.0)))
    return _client


@app.exception_handler(PropertyFinderError)
async def handle_backoffice_error(request: Request, exc: PropertyFinderError):
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"success": False, "message": str(exc)})


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── API: Listings ──────────────────────────────────────────────

class ListingFields(BaseModel):
    reference: str = ""
    permit_number: str = ""
    title: str = ""
    price: str = ""
    location_name: str = ""
    location_id: Optional[int] = None
    description: str = ""
    property_type: str = ""
    bedrooms: str = ""
    bathrooms: str = ""
    size: str = ""
    agent_name: str = ""
    extra_data: dict[str, Any] = {}


class BulkListingRequest(BaseModel):
    account_id: str
    listings: list[ListingFields]


@app.post("/api/bulk-listing")
def api_bulk_listing(data: BulkListingRequest):
    """Create one draft per entry. A bad entry is reported, the rest still go in."""
    credentials.get_credential(data.account_id)
    created = []
    failures = []
    for index, item in enumerate(data.listings, start=1):
        fields = item.model_dump()
        fields["extra_data"] = {**fields["extra_data"], "account_id": data.account_id}
        try:
            created.append(listings.create_listing(fields).to_dict())
        except (ValidationError, DuplicateReferenceError) as e:
            failures.append({"row": index, "reference": item.reference, "message": str(e)})
    return {
        "success": not failures,
        "message": f"Created {len(created)} of {len(data.listings)} listings",
        "created": len(created),
        "failed": len(failures),
        "listings": created,
        "failures": failures,
    }


@app.post("/api/bulk-listing/csv")
async def api_bulk_listing_csv(file: UploadFile = File(...)):
    content = await file.read()
    report = csv_import.import_csv(content, row_delay=float(db.get_setting("csv_row_delay", 0.0)))
    return {
        "success": not report.failures,
        "message": f"Processed {report.processed} rows, created {report.created_count} listings",
        "processed": report.processed,
        "created": report.created,
        "failures": report.failures,
    }


@app.get("/api/listings")
def api_list_listings(status: Optional[str] = None):
    if status:
        rows = listings.get_listings_by_status(status)
    else:
        rows = listings.get_all_listings()
    return [listing.to_dict() for listing in rows]


@app.post("/api/listings")
def api_create_listing(data: ListingFields):
    listing = listings.create_listing(data.model_dump())
    return {"success": True, "message": "Listing created", "listing": listing.to_dict()}


class PublishRequest(BaseModel):
    listing_id: str
    account_id: str = "galahome"
    force: bool = False


@app.post("/api/listings/publish")
def api_publish_listing(data: PublishRequest, client: PropertyFinderClient = Depends(get_client)):
    credential = credentials.require_credential(data.account_id)
    listing = listings.publish_listing(data.listing_id, credential, client, force=data.force)
    if listing.status == "live":
        message = f"Listing {listing.reference} is live"
    else:
        message = listing.error_message or "Publish failed"
    return {"success": listing.status == "live", "message": message, "listing": listing.to_dict()}


@app.get("/api/listings/{listing_id}")
def api_get_listing(listing_id: str):
    return listings.get_listing(listing_id).to_dict()


@app.delete("/api/listings/{listing_id}")
def api_delete_listing(listing_id: str):
    deleted = listings.delete_listing(listing_id)
    return {"success": deleted, "message": "Deleted" if deleted else "Listing not found"}


# ── API: Property Finder proxy ─────────────────────────────────

class LocationSearchRequest(BaseModel):
    account_id: str = "galahome"
    query: str
    limit: int = 10


@app.post("/api/pf/locations")
def api_search_locations(data: LocationSearchRequest, client: PropertyFinderClient = Depends(get_client)):
    if len(data.query.strip()) < 2:
        return {"success": True, "locations": []}
    credential = credentials.require_credential(data.account_id)
    token = client.token_for(credential)
    found = client.search_locations(token, data.query, limit=data.limit)
    return {"success": True, "locations": [vars(loc) for loc in found]}


class PermitRequest(BaseModel):
    account_id: str = "galahome"
    permit_number: str
    license_number: Optional[str] = None


@app.post("/api/pf/permit")
def api_lookup_permit(data: PermitRequest, client: PropertyFinderClient = Depends(get_client)):
    if not data.permit_number.strip():
        raise ValidationError("Permit number is required")
    credential = credentials.require_credential(data.account_id)
    license_number = data.license_number or credential.license_number
    if not license_number:
        raise ConfigurationError(f"No license number configured for account {data.account_id}")

    token = client.token_for(credential)
    permit = client.lookup_permit(token, data.permit_number.strip(), license_number)
    if permit is None:
        raise NotFoundError(f"Permit {data.permit_number} not found")
    return {"success": True, "permit": vars(permit)}


class TestConnectionRequest(BaseModel):
    account_id: str
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    save: bool = False


@app.post("/api/pf/test-connection")
def api_test_connection(data: TestConnectionRequest, client: PropertyFinderClient = Depends(get_client)):
    """Check an API key/secret and return the agents linked to it."""
    stored = credentials.get_credential(data.account_id)
    api_key = data.api_key or stored.api_key
    api_secret = data.api_secret or stored.api_secret
    if not api_key or not api_secret:
        raise ValidationError("API key and secret are required")

    token = client.authenticate(api_key, api_secret)
    agents = client.get_agents(token)
    if data.save:
        credentials.save_credential(Credential(
            account_id=data.account_id,
            api_key=api_key,
            api_secret=api_secret,
            license_number=stored.license_number,
            agents=agents,
        ))
    return {
        "success": True,
        "message": f"Connected. Found {len(agents)} agents.",
        "agents": [vars(a) for a in agents],
    }


# ── API: Account settings ─────────────────────────────────────

@app.get("/api/settings/{account_id}")
def api_get_account_settings(account_id: str):
    return credentials.get_credential(account_id).to_dict(mask_secret=True)


class AgentModel(BaseModel):
    id: int
    name: str = ""
    public_profile_id: str = ""


class AccountSettingsUpdate(BaseModel):
    api_key: str = ""
    api_secret: str = ""
    license_number: str = ""
    agents: list[AgentModel] = []


@app.put("/api/settings/{account_id}")
def api_update_account_settings(account_id: str, data: AccountSettingsUpdate):
    credential = credentials.save_credential(Credential(
        account_id=account_id,
        api_key=data.api_key,
        api_secret=data.api_secret,
        license_number=data.license_number,
        agents=[Agent(**a.model_dump()) for a in data.agents],
    ))
    return {"success": True, "message": "Settings saved", "settings": credential.to_dict(mask_secret=True)}


# ── API: Scraper ──────────────────────────────────────────────

class ScrapeRequest(BaseModel):
    location: str
    purpose: str = "for-sale"
    property_type: str = ""
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    bedrooms: Optional[int] = None
    pages: int = 1
    seed: Optional[int] = None
    append_to_master: bool = False


@app.post("/api/scraper")
def api_scrape(data: ScrapeRequest):
    params = ScrapeParams(**data.model_dump(exclude={"seed", "append_to_master"}))
    scraper = PropertyScraper(page_delay=float(db.get_setting("scraper_page_delay", 0.0)), seed=data.seed)
    results = scraper.scrape_all(params)
    appended = export.append_to_master(results) if data.append_to_master else 0
    return {
        "success": True,
        "message": f"Found {len(results)} listings across {params.pages} pages",
        "total": len(results),
        "appended": appended,
        "results": [r.to_dict() for r in results],
    }


class MasterAppendRequest(BaseModel):
    records: list[dict[str, Any]]


@app.get("/api/scraper/results")
def api_master_results():
    return export.get_master_results()


@app.post("/api/scraper/results")
def api_append_master(data: MasterAppendRequest):
    count = export.append_to_master(data.records)
    return {"success": True, "appended": count}


@app.delete("/api/scraper/results")
def api_clear_master():
    return {"success": True, "cleared": export.clear_master_results()}


class ExportRequest(BaseModel):
    location: str = "all"
    records: Optional[list[dict[str, Any]]] = None


@app.post("/api/scraper/export")
def api_export(data: ExportRequest):
    records = data.records if data.records is not None else export.get_master_results()
    filename = export.export_filename(config.LOCATION_NAMES.get(data.location, data.location))
    return Response(
        content=export.export_csv(records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── API: Images ───────────────────────────────────────────────

@app.post("/api/image-upload")
async def api_image_upload(files: list[UploadFile] = File(default=[]), location: str = Form("")):
    payload = [(f.filename or "image", await f.read()) for f in files]
    stored = images.upload_images(payload, location)
    return {
        "success": bool(stored),
        "message": f"Uploaded {len(stored)} of {len(payload)} images",
        "images": [img.to_dict() for img in stored],
        "urls": [img.cdn_url for img in stored],
    }


@app.get("/api/images")
def api_list_images(location: Optional[str] = None):
    return [img.to_dict() for img in images.list_images(location)]


@app.get("/api/images/next")
def api_next_image(location: str):
    return images.next_image_for_location(location).to_dict()


# ── API: Templates ────────────────────────────────────────────

@app.get("/api/templates")
def api_list_templates(type: Optional[str] = None, category: Optional[str] = None):
    return [t.to_dict() for t in templating.list_templates(type, category)]


@app.get("/api/templates/categories")
async def api_template_categories():
    return templating.CATEGORIES


class TemplateSave(BaseModel):
    id: Optional[str] = None
    name: str
    type: str
    category: str = "General"
    subject: Optional[str] = None
    content: str


@app.post("/api/templates")
def api_save_template(data: TemplateSave):
    template = templating.save_template(
        data.name, data.type, data.content,
        category=data.category, subject=data.subject, template_id=data.id,
    )
    return {"success": True, "message": "Template saved", "template": template.to_dict()}


@app.delete("/api/templates/{template_id}")
def api_delete_template(template_id: str):
    deleted = templating.delete_template(template_id)
    return {"success": deleted, "message": "Deleted" if deleted else "Template not found"}


class RenderRequest(BaseModel):
    values: Optional[dict[str, Any]] = None


@app.post("/api/templates/{template_id}/render")
def api_render_template(template_id: str, data: RenderRequest):
    return {"success": True, **templating.render_template(template_id, data.values)}


# ── API: Leads ────────────────────────────────────────────────

@app.get("/api/leads")
def api_list_leads(account_id: Optional[str] = None, listing_reference: Optional[str] = None):
    return db.get_leads(account_id=account_id, listing_reference=listing_reference)


# ── API: Scheduler ─────────────────────────────────────────────

@app.get("/api/scheduler/status")
async def api_scheduler_status():
    return scheduler.get_status()


@app.post("/api/scheduler/start")
def api_scheduler_start():
    scheduler.start_scheduler(db.get_setting("leads_sync_interval_hours", 1))
    return scheduler.get_status()


@app.post("/api/scheduler/stop")
def api_scheduler_stop():
    scheduler.stop_scheduler()
    return scheduler.get_status()


@app.post("/api/scheduler/trigger")
def api_scheduler_trigger():
    result = scheduler.trigger_now()
    if "error" in result:
        return JSONResponse(status_code=409, content={"success": False, "message": result["error"]})
    return {"success": True, **result}
