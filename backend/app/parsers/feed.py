"""Dealer CSV/JSON inventory feed parser."""

from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import pandas as pd

FeedRow = Dict[str, Any]

FORMAT_CSV = "csv"
FORMAT_JSON = "json"


class FeedParseError(RuntimeError):
    """Raised when a feed body cannot be parsed in its detected format."""


def detect_format(content_type: Optional[str], url: str) -> str:
    if "json" in (content_type or "").lower():
        return FORMAT_JSON
    if urlparse(url).path.lower().endswith(".json"):
        return FORMAT_JSON
    return FORMAT_CSV


def parse_csv(text: str) -> List[FeedRow]:
    if not text or not text.strip():
        return []
    try:
        df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, ValueError) as exc:
        raise FeedParseError(f"Unable to read CSV feed: {exc}") from exc

    df.columns = [str(col).lstrip("\ufeff").strip() for col in df.columns]
    df = df.fillna("")
    rows: List[FeedRow] = []
    for record in df.to_dict(orient="records"):
        rows.append({column: str(value).strip() for column, value in record.items()})
    return rows


def parse_json(text: str) -> List[FeedRow]:
    try:
        payload = json.loads(text) if text and text.strip() else []
    except json.JSONDecodeError as exc:
        raise FeedParseError(f"Unable to read JSON feed: {exc}") from exc

    if isinstance(payload, dict):
        for container in ("listings", "items"):
            if isinstance(payload.get(container), list):
                payload = payload[container]
                break
        else:
            return []
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


def parse_feed(text: str, *, content_type: Optional[str], url: str) -> List[FeedRow]:
    if detect_format(content_type, url) == FORMAT_JSON:
        return parse_json(text)
    return parse_csv(text)


__all__ = ["FeedParseError", "FeedRow", "detect_format", "parse_csv", "parse_json", "parse_feed"]
