from __future__ import annotations

import logging
from typing import List

from backend.app.parsers.feed import FeedParseError, FeedRow, parse_feed
from backend.app.services.http_client import DealerSiteClient, FetchError

logger = logging.getLogger(__name__)


class FeedFetchError(RuntimeError):
    """Raised when a dealer feed cannot be fetched or parsed."""


async def fetch_feed(client: DealerSiteClient, feed_url: str) -> List[FeedRow]:
    try:
        document = await client.fetch(feed_url)
    except FetchError as exc:
        raise FeedFetchError(str(exc)) from exc

    try:
        rows = parse_feed(document.text, content_type=document.content_type, url=feed_url)
    except FeedParseError as exc:
        raise FeedFetchError(str(exc)) from exc

    logger.info("Fetched %d feed rows from %s", len(rows), feed_url)
    return rows
