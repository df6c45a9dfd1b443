"""Configuration for the Property Finder back-office.

Secrets and endpoints come from the environment. Runtime-configurable
settings are stored in the DB (settings table); the defaults below are used
for first-run seeding only.
"""

import os

# Database path
DB_PATH = os.environ.get("DB_PATH", "backoffice.db")

# Property Finder Atlas API
PF_API_BASE = os.environ.get("PF_API_BASE", "https://atlas.propertyfinder.com")
PF_TIMEOUT = float(os.environ.get("PF_TIMEOUT", "30"))

# Image storage (uploads are simulated, URLs follow the real bucket layout)
S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME", "gala-home-property-images")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
CLOUDFRONT_DOMAIN = os.environ.get("CLOUDFRONT_DOMAIN", "d1g4mqni3902xv.cloudfront.net")

# Brokerage accounts. API keys are read from PF_API_KEY_<ENV_SUFFIX>.
ACCOUNTS = [
    {
        "id": "galahome",
        "name": "Gala Home",
        "email": "info@galahome.ae",
        "license_number": "CN-1100636",
        "env_suffix": "GALAHOME",
    },
    {
        "id": "vamrealty",
        "name": "VAM Realty",
        "email": "admin@realtyvam.com",
        "license_number": "",
        "env_suffix": "VAM",
    },
]


def get_account(account_id: str):
    for account in ACCOUNTS:
        if account["id"] == account_id:
            return account
    return None


def env_credentials(account_id: str) -> dict:
    """API key/secret for an account from the environment (empty if unset)."""
    account = get_account(account_id)
    if account is None:
        return {"api_key": "", "api_secret": ""}
    suffix = account["env_suffix"]
    return {
        "api_key": os.environ.get(f"PF_API_KEY_{suffix}", ""),
        "api_secret": os.environ.get(f"PF_API_SECRET_{suffix}", ""),
    }


# Top-level emirates, stripped from location ancestry when building display names
CITY_NAMES = ["Dubai", "Abu Dhabi", "Sharjah", "Ajman", "Ras Al Khaimah", "Fujairah", "Umm Al Quwain"]

PROPERTY_TYPES = {
    "AP": "Apartment",
    "VH": "Villa",
    "TH": "Townhouse",
    "PH": "Penthouse",
    "LP": "Land/Plot",
    "FF": "Full Floor",
    "BU": "Bulk Units",
    "CD": "Compound",
    "DX": "Duplex",
    "WB": "Whole Building",
    "OF": "Office",
    "RE": "Retail",
    "WH": "Warehouse",
    "SH": "Shop",
    "SR": "Showroom",
}

OFFERING_TYPES = {"RS": "For Sale", "RR": "For Rent"}
FURNISHING_TYPES = ["furnished", "unfurnished", "semi_furnished"]
PROJECT_STATUSES = ["completed", "off_plan"]

# Scraper location ids -> display names
LOCATION_NAMES = {
    "1": "Dubai",
    "49": "Dubai Land",
    "50": "Business Bay",
    "51": "Dubai Marina",
    "52": "Downtown Dubai",
    "53": "Palm Jumeirah",
    "54": "JBR",
    "55": "Dubai Hills Estate",
    "56": "Arabian Ranches",
    "57": "Jumeirah Village Circle",
    "58": "Al Barsha",
    "59": "DIFC",
    "60": "City Walk",
    "61": "Jumeirah",
    "62": "Al Quoz",
    "63": "Dubai Silicon Oasis",
    "64": "Motor City",
    "65": "Sports City",
    "66": "International City",
    "67": "Discovery Gardens",
}

SCRAPER_AGENCIES = [
    "Emirates Properties",
    "Gulf Sotheby's",
    "Betterhomes",
    "Allsopp & Allsopp",
    "Driven Properties",
    "LuxuryProperty.ae",
    "Haus & Haus",
    "Engel & Völkers",
]

SCRAPER_RESULTS_PER_PAGE = 25

# CSV columns required for bulk upload (matched case-insensitively)
CSV_REQUIRED_COLUMNS = [
    "Reference",
    "Permit_Number",
    "Agent_Name",
    "Property_Type",
    "Location_Name",
    "Title_EN",
    "Description_EN",
    "Bathrooms",
    "Property_Size",
]

# ── Defaults for first-run DB seeding ──────────────────────────

DEFAULT_SETTINGS = {
    # Seconds to wait after publish before reading back the live URL.
    "publish_url_delay": 3.0,
    # Pause between CSV rows; only useful for progress display.
    "csv_row_delay": 0.0,
    "scraper_page_delay": 0.0,
    "leads_sync_interval_hours": 1,
    "leads_sync_enabled": False,
    "leads_page_size": 50,
}

# Public listing URL used when the portal has not generated one yet
PF_PUBLIC_LISTING_URL = os.environ.get(
    "PF_PUBLIC_LISTING_URL", "https://www.propertyfinder.ae/en/property/listing-{id}"
)
