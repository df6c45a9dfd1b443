"""Client for the Property Finder Atlas API."""

import logging
import re
import threading
import time
from typing import Any, Optional, Union

import requests

import config
from errors import AuthError, PropertyFinderError, TransportError, UpstreamError
from models import Agent, Credential, Listing, Location, PermitDetails

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = 1800
TOKEN_REFRESH_MARGIN = 60
MIN_LOCATION_QUERY = 2


def normalize_bedrooms(value: Union[int, float, str, None]) -> str:
    """Map a room count to the upstream bedroom value ("studio" for 0)."""
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned == "studio":
            return "studio"
        match = re.match(r"\d+", cleaned)
        if not match:
            return "studio"
        value = int(match.group(0))
    if value is None:
        return "studio"
    num = int(value)
    return "studio" if num == 0 else str(num)


def build_location_name(tree: list[dict]) -> str:
    """Join a location's ancestry, leaving out the top-level emirates."""
    parts = [t.get("name", "") for t in tree if t.get("name") and t.get("name") not in config.CITY_NAMES]
    return ", ".join(parts)


def parse_number(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^\d.]", "", str(value).replace(",", ""))
    if cleaned in ("", "."):
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _as_int_if_whole(value: float) -> Union[int, float]:
    return int(value) if float(value).is_integer() else value


def build_listing_payload(listing: Listing, agent_id: Optional[int]) -> dict:
    """Translate a stored listing into the Atlas create-listing payload.

    Price, location and agent are left out when unset; the upstream decides
    whether the listing is acceptable.
    """
    extra = listing.extra_data or {}
    offering_type = (extra.get("offering_type") or "RS").upper()
    is_sale = offering_type == "RS"
    property_type = config.PROPERTY_TYPES.get(listing.property_type.upper(), listing.property_type)

    payload = {
        "reference": listing.reference,
        "category": "residential_sale" if is_sale else "residential_rent",
        "type": property_type.lower(),
        "projectStatus": extra.get("project_status") or "completed",
        "furnishingType": extra.get("furnishing_type") or "unfurnished",
        "title": {"en": listing.title},
        "description": {"en": listing.description or listing.title},
        "bedrooms": normalize_bedrooms(listing.bedrooms),
        "bathrooms": _as_int_if_whole(parse_number(listing.bathrooms) or 0),
        "size": _as_int_if_whole(parse_number(listing.size) or 0),
        "media": {"images": [{"original": {"url": url}} for url in extra.get("images", [])]},
        "compliance": {"type": "rera", "listingAdvertisementNumber": listing.permit_number},
        "amenities": extra.get("amenities", []),
    }

    price = parse_number(listing.price)
    if price is not None:
        payload["price"] = {
            "type": "fixed" if is_sale else "yearly",
            "amounts": {"sale" if is_sale else "rent": _as_int_if_whole(price)},
        }
    if listing.location_id is not None:
        payload["location"] = {"id": listing.location_id}
    if agent_id is not None:
        payload["createdBy"] = {"id": agent_id}
        payload["assignedTo"] = {"id": agent_id}
    return payload


class PropertyFinderClient:
    """Thin wrapper over the Atlas endpoints used by the back-office."""

    def __init__(self, base_url: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None,
                 publish_url_delay: float = 3.0):
        self.base_url = (base_url or config.PF_API_BASE).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else config.PF_TIMEOUT
        self.publish_url_delay = publish_url_delay
        self._tokens: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    # ── transport ──────────────────────────────────────────────

    def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.error(f"Timed out after {self.timeout}s: {method} {path}")
            raise TransportError(f"Request to Property Finder timed out: {path}") from e
        except requests.RequestException as e:
            logger.error(f"Request failed for {method} {path}: {e}")
            raise TransportError(f"Could not reach Property Finder: {e}") from e
        logger.debug(f"{method} {path} -> {resp.status_code}")
        return resp

    def _check(self, resp: requests.Response, action: str, token: Optional[str] = None):
        if resp.ok:
            return
        body = (resp.text or "").strip()
        if resp.status_code == 401 and token:
            self.invalidate_token(token)
            raise AuthError(f"{action} rejected the access token")
        logger.warning(f"{action} failed: {resp.status_code} {body[:200]}")
        raise UpstreamError(body or f"{action} failed: {resp.status_code}",
                            status_code=resp.status_code, body=body)

    def _json(self, resp: requests.Response, action: str) -> dict:
        """Decode a 2xx body, which must be a JSON object."""
        body = (resp.text or "").strip()
        try:
            data = resp.json()
        except ValueError as e:
            logger.warning(f"{action} returned a non-JSON body: {body[:200]}")
            raise UpstreamError(f"{action} returned an unreadable response",
                                status_code=resp.status_code, body=body) from e
        if not isinstance(data, dict):
            raise UpstreamError(f"{action} returned an unexpected response",
                                status_code=resp.status_code, body=body)
        return data

    # ── auth ──────────────────────────────────────────────────

    def _exchange(self, api_key: str, api_secret: str) -> tuple[str, float]:
        resp = self._request("POST", "/v1/auth/token", json={"apiKey": api_key, "apiSecret": api_secret})
        if not resp.ok:
            raise AuthError(f"Authentication failed: {resp.status_code}")
        try:
            data = self._json(resp, "Authentication")
            token = data["accessToken"]
            ttl = float(data.get("expiresIn") or DEFAULT_TOKEN_TTL)
        except (UpstreamError, KeyError, TypeError, ValueError) as e:
            raise AuthError("Authentication returned no access token") from e
        if not token:
            raise AuthError("Authentication returned no access token")
        return token, ttl

    def authenticate(self, api_key: str, api_secret: str) -> str:
        """Exchange an API key/secret for a bearer token. Never cached."""
        token, _ = self._exchange(api_key, api_secret)
        return token

    def token_for(self, credential: Credential) -> str:
        """Bearer token for a credential, reusing a cached one until shortly before expiry."""
        if not credential.api_key or not credential.api_secret:
            raise AuthError(f"No API key/secret for account {credential.account_id}")

        with self._lock:
            cached = self._tokens.get(credential.api_key)
            if cached and cached[1] > time.monotonic():
                return cached[0]

        token, ttl = self._exchange(credential.api_key, credential.api_secret)
        with self._lock:
            self._tokens[credential.api_key] = (token, time.monotonic() + max(float(ttl) - TOKEN_REFRESH_MARGIN, 0))
        logger.info(f"Obtained access token for account {credential.account_id}")
        return token

    def invalidate_token(self, token: str):
        with self._lock:
            for key, (cached, _) in list(self._tokens.items()):
                if cached == token:
                    del self._tokens[key]

    # ── lookups ───────────────────────────────────────────────

    def search_locations(self, token: str, query: str, limit: int = 10) -> list[Location]:
        query = (query or "").strip()
        if len(query) < MIN_LOCATION_QUERY:
            return []

        resp = self._request("GET", "/v1/locations", token=token, params={"name": query, "limit": limit})
        self._check(resp, "Location search", token)

        locations = []
        for loc in self._json(resp, "Location search").get("data") or []:
            if not isinstance(loc, dict) or loc.get("id") is None:
                continue
            full_name = build_location_name(loc.get("tree") or []) or loc.get("name", "")
            locations.append(Location(id=loc["id"], name=loc.get("name", ""), full_name=full_name))
        return locations

    def lookup_permit(self, token: str, permit_number: str, license_number: str) -> Optional[PermitDetails]:
        """Fetch a RERA permit. Returns None when the upstream has no such permit."""
        resp = self._request(
            "GET", f"/v1/compliances/{permit_number}/{license_number}",
            token=token, params={"permitType": "rera"},
        )
        if resp.status_code == 404:
            logger.info(f"Permit {permit_number} not found for license {license_number}")
            return None
        self._check(resp, "Permit lookup", token)

        records = self._json(resp, "Permit lookup").get("data") or []
        if not records or not isinstance(records[0], dict):
            return None
        permit = records[0]
        prop = permit.get("property") or {}
        rooms = prop.get("roomsCount")
        return PermitDetails(
            permit_number=permit.get("permitNumber", permit_number),
            expires_at=permit.get("expiresAt"),
            price=prop.get("value"),
            bedrooms=normalize_bedrooms(rooms) if rooms is not None else None,
            size=prop.get("size"),
            location_name=prop.get("locationName"),
            listing_type=prop.get("listingType"),
        )

    def get_agents(self, token: str) -> list[Agent]:
        resp = self._request("GET", "/v1/users", token=token)
        self._check(resp, "Fetching agents", token)

        users = self._json(resp, "Fetching agents").get("data") or []
        if not users or not isinstance(users[0], dict):
            return []
        agents = []
        for a in users[0].get("agents") or []:
            try:
                agents.append(Agent(id=int(a["id"]), name=a.get("name", ""),
                                    public_profile_id=a.get("publicProfileId") or ""))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping agent record without a usable id: {a!r}")
        return agents

    # ── listings ──────────────────────────────────────────────

    def create_listing(self, token: str, payload: dict) -> str:
        resp = self._request("POST", "/v1/listings", token=token, json=payload)
        self._check(resp, "Listing create", token)
        data = self._json(resp, "Listing create")
        inner = data.get("data")
        remote_id = (inner.get("id") if isinstance(inner, dict) else None) or data.get("id")
        if not remote_id:
            raise UpstreamError("Listing create returned no id", status_code=resp.status_code, body=resp.text)
        return str(remote_id)

    def get_listing(self, token: str, remote_id: str) -> dict:
        resp = self._request("GET", f"/v1/listings/{remote_id}", token=token)
        self._check(resp, "Listing fetch", token)
        data = self._json(resp, "Listing fetch").get("data")
        return data if isinstance(data, dict) else {}

    def publish_listing(self, token: str, remote_id: str) -> Optional[str]:
        """Publish a created listing and return its live URL when the upstream has one."""
        resp = self._request("POST", f"/v1/listings/{remote_id}/publish", token=token)
        self._check(resp, "Listing publish", token)

        # The portal URL is generated asynchronously after publish.
        if self.publish_url_delay:
            time.sleep(self.publish_url_delay)

        try:
            data = self.get_listing(token, remote_id)
        except PropertyFinderError as e:
            logger.warning(f"Published {remote_id} but could not read back its URL: {e}")
            return None
        portals = data.get("portals")
        portal = portals.get("propertyfinder") if isinstance(portals, dict) else None
        return portal.get("url") if isinstance(portal, dict) else None

    def create_and_publish(self, token: str, payload: dict) -> dict:
        """Create then publish. Not atomic: a failed publish leaves the remote listing behind."""
        remote_id = self.create_listing(token, payload)
        logger.info(f"Created remote listing {remote_id} for {payload.get('reference')}")
        try:
            url = self.publish_listing(token, remote_id)
        except UpstreamError as e:
            e.remote_id = remote_id
            raise
        except PropertyFinderError as e:
            raise UpstreamError(str(e), remote_id=remote_id) from e
        return {"id": remote_id, "url": url}

    # ── leads ─────────────────────────────────────────────────

    def get_leads(self, token: str, page: int = 1, limit: int = 50) -> tuple[list[dict], int]:
        resp = self._request("GET", "/v1/leads", token=token, params={"page": page, "limit": limit})
        self._check(resp, "Fetching leads", token)
        data = self._json(resp, "Fetching leads")
        leads = [lead for lead in data.get("data") or [] if isinstance(lead, dict)]
        meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
        try:
            total = int(meta.get("total") or 0)
        except (TypeError, ValueError) as e:
            raise UpstreamError("Fetching leads returned a bad total",
                                status_code=resp.status_code, body=resp.text) from e
        return leads, total
