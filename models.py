"""Data classes for the Property Finder back-office."""

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

LISTING_STATUSES = ("draft", "live", "failed")
TEMPLATE_TYPES = ("email", "property", "whatsapp")


@dataclass
class Agent:
    id: int
    name: str
    public_profile_id: str = ""


@dataclass
class Credential:
    """Per-account API credentials and the agents last fetched with them."""
    account_id: str
    api_key: str = ""
    api_secret: str = ""
    license_number: str = ""
    agents: list[Agent] = field(default_factory=list)

    def to_dict(self, mask_secret: bool = False) -> dict:
        data = asdict(self)
        if mask_secret and self.api_secret:
            data["api_secret"] = "*" * 8
        return data


@dataclass
class Location:
    id: int
    name: str
    full_name: str


@dataclass
class PermitDetails:
    """Normalized RERA compliance record."""
    permit_number: str
    expires_at: Optional[str] = None
    price: Optional[float] = None
    bedrooms: Optional[str] = None
    size: Optional[float] = None
    location_name: Optional[str] = None
    listing_type: Optional[str] = None


@dataclass
class Listing:
    id: str
    reference: str
    permit_number: str
    title: str
    price: str = ""
    location_name: str = ""
    location_id: Optional[int] = None
    description: str = ""
    property_type: str = ""
    bedrooms: str = ""
    bathrooms: str = ""
    size: str = ""
    agent_name: str = ""
    status: str = "draft"
    pf_listing_id: Optional[str] = None
    pf_listing_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: str = ""
    published_at: Optional[str] = None
    extra_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScrapedProperty:
    """A listing-shaped record produced by the scraper."""
    id: str
    title: str
    price: str
    location: str
    bedrooms: str
    bathrooms: str
    size: str
    property_type: str
    url: str
    agent: str
    verified: Optional[bool] = None
    permit_number: Optional[str] = None
    reference_number: Optional[str] = None
    completion_date: Optional[str] = None
    furnishing: Optional[str] = None
    page_number: Optional[int] = None
    position_on_page: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Template:
    id: str
    name: str
    type: str
    category: str
    content: str
    subject: Optional[str] = None
    variables: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StoredImage:
    id: str
    name: str
    location_name: str
    storage_key: str
    s3_url: str
    cdn_url: str
    uploaded_at: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Lead:
    id: str
    account_id: str
    listing_reference: str = ""
    location_name: str = ""
    lead_type: str = ""
    lead_date: str = ""
    client_name: str = ""
    client_phone: str = ""
    client_email: str = ""
    status: str = ""
    notes: Optional[str] = None


@dataclass
class ImportReport:
    """Outcome of a CSV ingestion run."""
    processed: int = 0
    created: list[str] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)
