"""Dealer site crawler: listing URL discovery and per-page vehicle extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Tuple

from backend.app.core.rate_limit import RequestPacer
from backend.app.core.settings import settings
from backend.app.parsers.jsonld import select_vehicle_node
from backend.app.parsers.links import (
    extract_listing_urls,
    looks_like_listing_url,
    origin,
    parse_sitemap_urls,
)
from backend.app.services.http_client import DealerSiteClient, FetchError
from backend.app.services.normalize import CanonicalListing, ScrapedSourceRecord, normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrawlerConfig:
    max_listings: int = 60
    delay_seconds: float = 0.15
    user_agent: str = "CarHubBot/1.0"
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "CrawlerConfig":
        return cls(
            max_listings=settings.scrape_max_listings,
            delay_seconds=settings.scrape_delay_ms / 1000,
            user_agent=settings.scrape_user_agent,
            timeout_seconds=settings.scrape_timeout_seconds,
        )


def extract_vehicle(html: str, url: str) -> Optional[CanonicalListing]:
    node = select_vehicle_node(html)
    if node is None:
        return None
    return normalize(ScrapedSourceRecord(node=node, page_url=url))


class SiteCrawler:
    def __init__(
        self,
        client: DealerSiteClient,
        config: Optional[CrawlerConfig] = None,
        pacer: Optional[RequestPacer] = None,
    ):
        self.client = client
        self.config = config or CrawlerConfig.from_settings()
        self.pacer = pacer or RequestPacer(self.config.delay_seconds)

    async def discover_listing_urls(
        self,
        inventory_url: Optional[str] = None,
        sitemap_url: Optional[str] = None,
    ) -> List[str]:
        """Collect candidate detail URLs; fetch errors propagate to the caller."""
        site_origin = origin(inventory_url or sitemap_url or "")
        if site_origin is None:
            return []

        found: Dict[str, None] = {}
        if sitemap_url:
            document = await self.client.fetch(sitemap_url)
            for url in parse_sitemap_urls(document.text, site_origin):
                if looks_like_listing_url(url):
                    found.setdefault(url, None)

        if inventory_url:
            document = await self.client.fetch(inventory_url)
            # Links resolve against the post-redirect page URL.
            for url in extract_listing_urls(document.text, document.url or inventory_url):
                found.setdefault(url, None)

        urls = list(found)[: max(0, self.config.max_listings)]
        logger.info("Discovered %d listing URLs (origin %s)", len(urls), site_origin)
        return urls

    async def crawl(self, urls: List[str]) -> AsyncIterator[Tuple[str, Optional[CanonicalListing]]]:
        """Fetch each detail page in turn, yielding ``(url, listing or None)``.

        Pages that fail to fetch are logged and skipped.
        """
        for url in urls:
            await self.pacer.acquire()
            try:
                document = await self.client.fetch(url)
                listing = extract_vehicle(document.text, url)
            except FetchError as exc:
                logger.warning("Skipping %s: %s", url, exc)
                continue
            except Exception:
                logger.exception("Failed to extract a vehicle from %s", url)
                continue
            yield url, listing
