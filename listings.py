"""Listing lifecycle: draft -> live | failed.

Listings are created locally as drafts and only change state through a
publish attempt. Publishing anything other than a draft needs ``force``.
"""

import logging
import sqlite3
import uuid
from typing import Optional

import config
import db
from credentials import resolve_agent_id
from errors import (
    DuplicateReferenceError,
    InvalidListingStateError,
    NotFoundError,
    PropertyFinderError,
    ValidationError,
)
from models import LISTING_STATUSES, Credential, Listing
from pf_client import PropertyFinderClient, build_listing_payload, parse_number

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "reference", "permit_number", "location_name", "title", "description",
    "property_type", "bedrooms", "bathrooms", "size", "price", "agent_name",
)


def _to_listing(row: dict) -> Listing:
    return Listing(**{k: v for k, v in row.items() if k in Listing.__dataclass_fields__})


def _clean(value) -> str:
    return "" if value is None else str(value).strip()


def create_listing(fields: dict, conn: Optional[sqlite3.Connection] = None,
                   require_price: bool = True) -> Listing:
    """Validate and store a new draft listing.

    Raises ValidationError for missing required fields and
    DuplicateReferenceError when the reference is already taken. Nothing is
    written when either is raised.
    """
    data = {name: _clean(fields.get(name)) for name in TEXT_FIELDS}

    missing = [name for name in ("reference", "permit_number", "title") if not data[name]]
    if require_price and not data["price"]:
        missing.append("price")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if data["price"] and parse_number(data["price"]) is None:
        raise ValidationError(f"Price must be numeric, got {data['price']!r}")

    location_id = fields.get("location_id")
    if location_id in ("", None):
        location_id = None
    else:
        try:
            location_id = int(location_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Location id must be an integer, got {location_id!r}")

    if db.get_listing_by_reference(data["reference"], conn=conn):
        raise DuplicateReferenceError(f"Reference {data['reference']} already exists")

    listing = Listing(
        id=uuid.uuid4().hex,
        location_id=location_id,
        status="draft",
        created_at=db.now_iso(),
        extra_data=dict(fields.get("extra_data") or {}),
        **data,
    )
    try:
        db.insert_listing(listing.to_dict(), conn=conn)
    except sqlite3.IntegrityError as e:
        raise DuplicateReferenceError(f"Reference {data['reference']} already exists") from e

    logger.info(f"Created draft listing {listing.reference} ({listing.id})")
    return listing


def get_listing(listing_id: str, conn: Optional[sqlite3.Connection] = None) -> Listing:
    row = db.get_listing(listing_id, conn=conn)
    if row is None:
        raise NotFoundError(f"Listing {listing_id} not found")
    return _to_listing(row)


def get_all_listings(conn: Optional[sqlite3.Connection] = None) -> list[Listing]:
    return [_to_listing(row) for row in db.get_listings(conn=conn)]


def get_listing_by_reference(reference: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Listing]:
    row = db.get_listing_by_reference(reference, conn=conn)
    return _to_listing(row) if row else None


def get_listings_by_status(status: str, conn: Optional[sqlite3.Connection] = None) -> list[Listing]:
    if status not in LISTING_STATUSES:
        raise ValidationError(f"Unknown status {status!r}; expected one of {', '.join(LISTING_STATUSES)}")
    return [_to_listing(row) for row in db.get_listings(status=status, conn=conn)]


def delete_listing(listing_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
    deleted = db.delete_listing(listing_id, conn=conn)
    if deleted:
        logger.info(f"Deleted listing {listing_id}")
    return deleted


def publish_listing(listing_id: str, credential: Credential, client: PropertyFinderClient,
                    force: bool = False, conn: Optional[sqlite3.Connection] = None) -> Listing:
    """Create and publish a listing upstream, recording the outcome.

    Upstream failures do not propagate: the listing is marked ``failed``
    with the error text and returned.
    """
    listing = get_listing(listing_id, conn=conn)
    if listing.status != "draft" and not force:
        raise InvalidListingStateError(
            f"Listing {listing.reference} is {listing.status}; pass force to publish it again"
        )

    try:
        agent_id = listing.extra_data.get("agent_id") or resolve_agent_id(credential, listing.agent_name)
        payload = build_listing_payload(listing, agent_id)
        token = client.token_for(credential)
        result = client.create_and_publish(token, payload)
    except PropertyFinderError as e:
        fields = {"status": "failed", "error_message": str(e), "pf_listing_url": None}
        remote_id = getattr(e, "remote_id", None)
        if remote_id:
            fields["pf_listing_id"] = remote_id
        db.update_listing(listing.id, fields, conn=conn)
        logger.warning(f"Publish failed for {listing.reference}: {e}")
        return get_listing(listing.id, conn=conn)

    db.update_listing(listing.id, {
        "status": "live",
        "pf_listing_id": result["id"],
        "pf_listing_url": result.get("url") or config.PF_PUBLIC_LISTING_URL.format(id=result["id"]),
        "published_at": db.now_iso(),
        "error_message": None,
    }, conn=conn)
    logger.info(f"Published {listing.reference} as {result['id']}")
    return get_listing(listing.id, conn=conn)
