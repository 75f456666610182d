"""Normalize dealer feed rows and scraped JSON-LD into canonical listings.

Each source shape has an adapter that pulls raw values through explicit,
ordered fallback chains into :class:`RawListingFields`. A single coercion pass
then turns those raw values into a :class:`CanonicalListing`, or ``None`` when
the record lacks a stock id, make or model.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from backend.app.parsers._listing_common import (
    YEAR_RE,
    key,
    parse_money_like,
    parse_year,
    path,
    pick,
    stable_stock_id,
    to_number,
    to_photos,
    to_status,
    to_text,
    to_type,
)

SOURCE_FEED = "dealer_feed"
SOURCE_SCRAPE = "dealer_scrape"


@dataclass(frozen=True)
class FeedSourceRecord:
    row: Mapping[str, Any]
    base_url: Optional[str] = None


@dataclass(frozen=True)
class ScrapedSourceRecord:
    node: Mapping[str, Any]
    page_url: str


SourceRecord = Union[FeedSourceRecord, ScrapedSourceRecord]


@dataclass
class RawListingFields:
    stock_id: Any = None
    type: Any = None
    status: Any = None
    make: Any = None
    model: Any = None
    variant: Any = None
    year: Any = None
    km: Any = None
    fuel: Any = None
    transmission: Any = None
    price: Any = None
    location: Any = None
    description: Any = None
    photos: Any = None
    base_url: Optional[str] = None


@dataclass
class CanonicalListing:
    stock_id: str
    make: str
    model: str
    type: str = "used"
    status: str = "available"
    variant: Optional[str] = None
    year: Optional[int] = None
    km: Optional[int] = None
    fuel: Optional[str] = None
    transmission: Optional[str] = None
    price: Optional[int] = None
    location: Optional[str] = None
    description: Optional[str] = None
    photo_urls: List[str] = field(default_factory=list)

    def to_row(self, *, dealer_id: int, source: str, seen_at: datetime) -> Dict[str, Any]:
        return {
            "dealer_id": dealer_id,
            "stock_id": self.stock_id,
            "source": source,
            "type": self.type,
            "status": self.status,
            "make": self.make,
            "model": self.model,
            "variant": self.variant,
            "year": self.year,
            "km": self.km,
            "fuel": self.fuel,
            "transmission": self.transmission,
            "price": self.price,
            "location": self.location,
            "description": self.description,
            "photo_urls": list(self.photo_urls),
            "last_seen_at": seen_at,
        }


FEED_CHAINS = {
    "stock_id": (key("stock_id"), key("stockId"), key("id"), key("vin")),
    "type": (key("type"),),
    "status": (key("status"),),
    "make": (key("make"), key("brand")),
    "model": (key("model"), key("series")),
    "variant": (key("variant"),),
    "year": (key("year"),),
    "km": (key("km"), key("kilometers"), key("mileage")),
    "fuel": (key("fuel"),),
    "transmission": (key("transmission"),),
    "price": (key("price"),),
    "location": (key("location"),),
    "description": (key("description"),),
    "photos": (key("photo_urls"), key("photos"), key("images")),
}

# Name-derived fallbacks are appended per record in adapt_scraped().
SCRAPED_CHAINS = {
    "stock_id": (
        key("sku"),
        key("productID"),
        key("mpn"),
        key("vehicleIdentificationNumber"),
        key("vin"),
        key("@id"),
    ),
    "type": (key("itemCondition"), path("offers", "itemCondition"), key("vehicleType"), key("bodyType")),
    "status": (path("offers", "availability"), key("status")),
    "make": (key("make"), path("brand", "name"), key("brand"), path("manufacturer", "name"), key("manufacturer")),
    "model": (key("model"), path("model", "name"), key("vehicleModel")),
    "variant": (key("variant"), key("vehicleConfiguration")),
    "year": (key("vehicleModelDate"), key("productionDate"), key("modelDate")),
    "km": (key("mileage"), path("mileageFromOdometer", "value"), key("mileageFromOdometer")),
    "fuel": (key("fuelType"), key("fuel")),
    "transmission": (key("vehicleTransmission"), key("transmission")),
    "price": (
        path("offers", "price"),
        path("offers", "priceSpecification", "price"),
        path("offers", "lowPrice"),
    ),
    "location": (
        path("offers", "seller", "address", "addressLocality"),
        path("offers", "seller", "address", "addressRegion"),
        path("offers", "seller", "address", "streetAddress"),
        path("offers", "seller", "address"),
    ),
    "description": (key("description"),),
    "photos": (key("image"), path("offers", "image")),
}


@dataclass(frozen=True)
class NameParts:
    year: Optional[int]
    make: Optional[str]
    model: Optional[str]
    variant: Optional[str]


def parse_name_parts(name: Optional[str]) -> NameParts:
    """Split free text such as ``"2021 Hyundai Creta SX"`` into year/make/model/variant."""
    clean = re.sub(r"\s+", " ", re.sub(r"[^\w\s]", " ", name or "")).strip()
    year_match = YEAR_RE.search(clean)
    year = int(year_match.group(0)) if year_match else None
    if year_match:
        clean = (clean[: year_match.start()] + clean[year_match.end() :]).strip()
    parts = clean.split()
    return NameParts(
        year=year,
        make=parts[0] if parts else None,
        model=parts[1] if len(parts) > 1 else None,
        variant=" ".join(parts[2:]) or None,
    )


def adapt_feed(record: FeedSourceRecord) -> RawListingFields:
    row = record.row
    values = {name: pick(chain, row) for name, chain in FEED_CHAINS.items() if name != "photos"}
    return RawListingFields(
        **values,
        photos=pick(FEED_CHAINS["photos"], row, scalar=False),
        base_url=record.base_url,
    )


def adapt_scraped(record: ScrapedSourceRecord) -> RawListingFields:
    node = record.node
    parsed = parse_name_parts(to_text(node.get("name")))
    fallbacks = {
        "make": parsed.make,
        "model": parsed.model,
        "variant": parsed.variant,
        "year": parsed.year,
        "stock_id": stable_stock_id(record.page_url),
    }
    values: Dict[str, Any] = {}
    for name, chain in SCRAPED_CHAINS.items():
        if name == "photos":
            continue
        value = pick(chain, node)
        if value is None or (name in {"make", "model", "variant"} and to_text(value) is None):
            value = fallbacks.get(name)
        values[name] = value
    return RawListingFields(
        **values,
        photos=pick(SCRAPED_CHAINS["photos"], node, scalar=False),
        base_url=record.page_url,
    )


def coerce_listing(fields: RawListingFields) -> Optional[CanonicalListing]:
    stock_id = to_text(fields.stock_id)
    make = to_text(fields.make)
    model = to_text(fields.model)
    if not (stock_id and make and model):
        return None

    km = to_number(fields.km)
    return CanonicalListing(
        stock_id=stock_id,
        make=make,
        model=model,
        type=to_type(fields.type),
        status=to_status(fields.status),
        variant=to_text(fields.variant),
        year=parse_year(fields.year),
        km=int(round(km)) if km is not None else None,
        fuel=to_text(fields.fuel),
        transmission=to_text(fields.transmission),
        price=parse_money_like(fields.price),
        location=to_text(fields.location),
        description=to_text(fields.description),
        photo_urls=to_photos(fields.photos, fields.base_url),
    )


def normalize(record: SourceRecord) -> Optional[CanonicalListing]:
    if isinstance(record, FeedSourceRecord):
        return coerce_listing(adapt_feed(record))
    if isinstance(record, ScrapedSourceRecord):
        return coerce_listing(adapt_scraped(record))
    raise TypeError(f"Unsupported source record: {type(record).__name__}")
