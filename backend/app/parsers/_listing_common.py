"""Common coercion helpers for dealer feed rows and scraped structured data."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import urljoin, urlparse

NON_NUMERIC_RE = re.compile(r"[^0-9.]")
YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
PHOTO_SPLIT_RE = re.compile(r"[\n,|]")
LEADING_AMOUNT_RE = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*(crores?|cr|lakhs?|lacs?|l|k)?\b")

MONEY_MULTIPLIERS = {
    "k": 1_000,
    "l": 100_000,
    "lac": 100_000,
    "lacs": 100_000,
    "lakh": 100_000,
    "lakhs": 100_000,
    "cr": 10_000_000,
    "crore": 10_000_000,
    "crores": 10_000_000,
}

SOLD_KEYWORDS = ("sold", "inactive", "unavailable", "out_of_stock", "outofstock", "soldout")

Extractor = Callable[[Mapping[str, Any]], Any]


def to_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = str(value).strip()
    return text or None


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
        return numeric if math.isfinite(numeric) and numeric >= 0 else None
    text = to_text(value)
    if text is None:
        return None
    # "Rs. 950000" leaves a leading dot behind once the letters are gone.
    cleaned = NON_NUMERIC_RE.sub("", text).strip(".")
    if not cleaned:
        return None
    try:
        numeric = float(cleaned)
    except ValueError:
        return None
    return numeric if math.isfinite(numeric) else None


def parse_money_like(value: Any) -> Optional[int]:
    """Parse a price such as ``"₹9,50,000"``, ``"INR 950000"`` or ``"9.5L"``.

    Only the first number in the text counts; a lakh/crore/thousand suffix
    scales it when attached directly to it, so ``"₹5,50,000 (72k km)"`` is
    550000. Returns a whole amount or ``None``.
    """
    text = to_text(value) if not isinstance(value, (int, float)) else None
    numeric: Optional[float] = None
    if text is not None:
        match = LEADING_AMOUNT_RE.search(text.lower())
        if match:
            suffix = match.group(2)
            try:
                numeric = float(match.group(1).replace(",", ""))
            except ValueError:
                numeric = None
            if numeric is not None and suffix:
                numeric *= MONEY_MULTIPLIERS[suffix]
    if numeric is None:
        numeric = to_number(value)
    if numeric is None:
        return None
    return int(round(numeric))


def parse_year(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        year = int(value)
        return year if 1900 <= year <= 2099 else None
    text = to_text(value)
    if text is None:
        return None
    match = YEAR_RE.search(text)
    return int(match.group(0)) if match else None


def to_type(value: Any) -> str:
    text = (to_text(value) or "").lower()
    if text == "new" or "newcondition" in text:
        return "new"
    return "used"


def to_status(value: Any) -> str:
    text = (to_text(value) or "").lower()
    if any(flag in text for flag in SOLD_KEYWORDS):
        return "sold"
    return "available"


def _photo_candidates(value: Any) -> Iterable[str]:
    if isinstance(value, (list, tuple)):
        for item in value:
            yield from _photo_candidates(item)
        return
    if isinstance(value, dict):
        for key in ("url", "contentUrl", "@id"):
            text = to_text(value.get(key))
            if text:
                yield text
                return
        return
    text = to_text(value)
    if not text:
        return
    for part in PHOTO_SPLIT_RE.split(text):
        part = part.strip()
        if part:
            yield part


def to_photos(value: Any, base_url: Optional[str] = None) -> List[str]:
    """Return absolute photo URLs, de-duplicated with source order preserved."""
    photos: Dict[str, None] = {}
    for candidate in _photo_candidates(value):
        try:
            url = urljoin(base_url, candidate) if base_url else candidate
            scheme = urlparse(url).scheme
        except ValueError:
            continue
        if scheme in {"http", "https"}:
            photos.setdefault(url, None)
    return list(photos)


def stable_stock_id(url: str) -> str:
    """Short deterministic id for listings that publish no stock number."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]


def key(name: str) -> Extractor:
    return lambda source: source.get(name)


def path(*names: str) -> Extractor:
    """Follow nested mappings; a list along the way contributes its first item."""

    def extract(source: Mapping[str, Any]) -> Any:
        current: Any = source
        for name in names:
            if isinstance(current, list):
                current = current[0] if current else None
            if not isinstance(current, Mapping):
                return None
            current = current.get(name)
        return current

    return extract


def _present(value: Any, scalar: bool) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list, tuple)):
        return not scalar and bool(value)
    return True


def pick(chain: Sequence[Extractor], source: Mapping[str, Any], *, scalar: bool = True) -> Any:
    """Return the first present value produced by ``chain``.

    Scalar chains skip mappings and lists so a nested ``{"name": ...}`` object
    never shadows a later plain-text fallback.
    """
    for extractor in chain:
        value = extractor(source)
        if _present(value, scalar):
            return value
    return None
