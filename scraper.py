"""Property Finder search scraper.

Produces listing-shaped records page by page. Records are synthesized from
the search parameters rather than extracted from live pages.
"""

import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Iterator, Optional

import config
from errors import ValidationError
from models import ScrapedProperty

logger = logging.getLogger(__name__)

PURPOSES = ("for-sale", "for-rent")
PROPERTY_TYPES = ["Apartment", "Villa", "Townhouse", "Penthouse", "Duplex"]
COMPLETION_DATES = ["Q1 2027", "Q3 2027", "Q2 2028", "Q4 2028"]
MAX_PAGES = 50


@dataclass
class ScrapeParams:
    location: str
    purpose: str = "for-sale"
    property_type: str = ""
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    bedrooms: Optional[int] = None
    pages: int = 1

    def validate(self):
        if not self.location:
            raise ValidationError("Location is required")
        if self.purpose not in PURPOSES:
            raise ValidationError(f"Purpose must be one of {', '.join(PURPOSES)}")
        if not 1 <= self.pages <= MAX_PAGES:
            raise ValidationError(f"Pages must be between 1 and {MAX_PAGES}")
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValidationError("Minimum price is above maximum price")

    @property
    def location_name(self) -> str:
        return config.LOCATION_NAMES.get(str(self.location), str(self.location))


class PropertyScraper:
    def __init__(self, page_delay: float = 0.0, seed: Optional[int] = None):
        self.page_delay = page_delay
        self.rng = random.Random(seed)

    def _delay(self):
        if self.page_delay:
            time.sleep(self.page_delay)

    def _token(self, length: int) -> str:
        return "".join(self.rng.choices(string.ascii_lowercase + string.digits, k=length))

    def scrape(self, params: ScrapeParams) -> Iterator[list[ScrapedProperty]]:
        """Yield one batch of records per results page."""
        params.validate()
        total = 0
        for page in range(1, params.pages + 1):
            if page > 1:
                self._delay()
            batch = [
                self._make_property(params, page, position)
                for position in range(1, config.SCRAPER_RESULTS_PER_PAGE + 1)
            ]
            total += len(batch)
            logger.info(f"Page {page}: found {len(batch)} listings (total: {total})")
            yield batch

    def scrape_all(self, params: ScrapeParams) -> list[ScrapedProperty]:
        results = []
        for batch in self.scrape(params):
            results.extend(batch)
        return results

    def _price(self, params: ScrapeParams, beds: int) -> int:
        base = 50000 if params.purpose == "for-rent" else 500000
        price = round(base * max(beds, 1) * (0.5 + self.rng.random()))
        if params.min_price is not None:
            price = max(price, int(params.min_price))
        if params.max_price is not None:
            price = min(price, int(params.max_price))
        return price

    def _make_property(self, params: ScrapeParams, page: int, position: int) -> ScrapedProperty:
        rng = self.rng
        location_name = params.location_name
        beds = params.bedrooms if params.bedrooms is not None else rng.randint(1, 5)
        baths = max(1, beds - rng.randint(0, 1))
        price = self._price(params, beds)
        size = round(500 + beds * 300 + rng.random() * 500)
        property_type = params.property_type.title() if params.property_type else rng.choice(PROPERTY_TYPES)
        agent = rng.choice(config.SCRAPER_AGENCIES)
        off_plan = rng.random() < 0.2

        label = "Studio" if beds == 0 else f"{beds} BR"
        suffix = "/year" if params.purpose == "for-rent" else ""
        initials = "".join(word[0] for word in agent.split() if word[0].isalpha()).upper()

        return ScrapedProperty(
            id=f"pf-{int(time.time() * 1000)}-{page}-{position}-{self._token(6)}",
            title=f"{label} {property_type} in {location_name}",
            price=f"AED {price:,}{suffix}",
            location=f"{location_name}, Dubai",
            bedrooms=str(beds),
            bathrooms=str(baths),
            size=str(size),
            property_type=property_type,
            url=f"https://www.propertyfinder.ae/en/property/{self._token(10)}",
            agent=agent,
            verified=rng.random() < 0.6,
            permit_number=str(rng.randint(10**9, 10**10 - 1)),
            reference_number=f"{initials}-{rng.randint(1000, 99999)}",
            completion_date=rng.choice(COMPLETION_DATES) if off_plan else None,
            furnishing=rng.choice(config.FURNISHING_TYPES),
            page_number=page,
            position_on_page=position,
        )
