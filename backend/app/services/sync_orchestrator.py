from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select

from backend.app.core.rate_limit import RequestPacer
from backend.app.core.settings import settings
from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.crawler import CrawlerConfig, SiteCrawler
from backend.app.services.feed_ingest import FeedFetchError, fetch_feed
from backend.app.services.http_client import DealerSiteClient, FetchError
from backend.app.services.ingest import upsert_listing
from backend.app.services.lifecycle import run_cleanup
from backend.app.services.normalize import (
    SOURCE_FEED,
    SOURCE_SCRAPE,
    FeedSourceRecord,
    normalize,
)

logger = logging.getLogger(__name__)

MODE_AUTO = "auto"
MODE_FEED = "feed"
MODE_SCRAPE = "scrape"
SYNC_MODES = (MODE_AUTO, MODE_FEED, MODE_SCRAPE)

ERROR_NOT_CONFIGURED = "No feed or inventory URL configured"
ERROR_NO_URLS = "No listing URLs found"
ERROR_TIMED_OUT = "Sync timed out"
ERROR_FAILED = "Sync failed"


class SyncConfigurationError(ValueError):
    """Raised when a dealer has no usable feed or inventory URL."""


def _clean_url(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


@dataclass(frozen=True)
class DealerSyncConfig:
    dealer_id: int
    feed_url: Optional[str] = None
    inventory_url: Optional[str] = None
    sitemap_url: Optional[str] = None

    @classmethod
    def from_dealer(cls, dealer: models.Dealer) -> "DealerSyncConfig":
        return cls(
            dealer_id=dealer.id,
            feed_url=_clean_url(dealer.feed_url),
            inventory_url=_clean_url(dealer.inventory_url)
            or _clean_url(dealer.scrape_url)
            or _clean_url(dealer.website_url),
            sitemap_url=_clean_url(dealer.sitemap_url),
        )

    def resolve_mode(self, requested: str = MODE_AUTO) -> str:
        requested = (requested or MODE_AUTO).strip().lower()
        if self.feed_url and requested != MODE_SCRAPE:
            return MODE_FEED
        if self.inventory_url or self.sitemap_url:
            return MODE_SCRAPE
        raise SyncConfigurationError(ERROR_NOT_CONFIGURED)


@dataclass
class SyncResult:
    ok: bool
    rows: Optional[int] = None
    mode: Optional[str] = None
    scanned: Optional[int] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


class _Progress:
    """Rows persisted so far, readable after a deadline cancels the sync."""

    def __init__(self):
        self.rows = 0
        self.scanned: Optional[int] = None


class DealerSyncOrchestrator:
    def __init__(
        self,
        client: Optional[DealerSiteClient] = None,
        config: Optional[CrawlerConfig] = None,
        *,
        deadline_seconds: Optional[float] = None,
        pacer: Optional[RequestPacer] = None,
    ):
        self.config = config or CrawlerConfig.from_settings()
        self.client = client or DealerSiteClient(
            user_agent=self.config.user_agent,
            timeout=self.config.timeout_seconds,
        )
        self._owns_client = client is None
        self.crawler = SiteCrawler(self.client, self.config, pacer)
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else settings.sync_deadline_seconds
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "DealerSyncOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def sync_dealer(self, config: DealerSyncConfig, mode: str = MODE_AUTO) -> SyncResult:
        """Sync one dealer's inventory. Never raises; failures come back as ``ok=False``."""
        started_at = datetime.now(timezone.utc)
        try:
            resolved = config.resolve_mode(mode)
        except SyncConfigurationError as exc:
            result = SyncResult(ok=False, error=str(exc))
            self._record_run(config.dealer_id, result, started_at)
            return result

        progress = _Progress()
        try:
            if resolved == MODE_FEED:
                coro = self._sync_feed(config, progress)
            else:
                coro = self._sync_scrape(config, progress)
            result = await asyncio.wait_for(coro, timeout=self.deadline_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Dealer %s sync hit the %ss deadline after %d rows",
                config.dealer_id,
                self.deadline_seconds,
                progress.rows,
            )
            result = SyncResult(
                ok=False,
                rows=progress.rows,
                mode=resolved,
                scanned=progress.scanned,
                error=ERROR_TIMED_OUT,
            )
        except Exception:
            logger.exception("Dealer %s sync failed", config.dealer_id)
            result = SyncResult(ok=False, mode=resolved, error=ERROR_FAILED)

        logger.info("Dealer %s sync finished: %s", config.dealer_id, result.as_dict())
        self._record_run(config.dealer_id, result, started_at)
        return result

    async def _sync_feed(self, config: DealerSyncConfig, progress: _Progress) -> SyncResult:
        try:
            rows = await fetch_feed(self.client, config.feed_url or "")
        except FeedFetchError as exc:
            logger.warning("Feed fetch failed for dealer %s: %s", config.dealer_id, exc)
            return SyncResult(ok=False, mode=MODE_FEED, error=str(exc))

        seen_at = datetime.now(timezone.utc)
        for index, row in enumerate(rows):
            try:
                listing = normalize(FeedSourceRecord(row=row, base_url=config.feed_url))
                if listing is None:
                    continue
                upsert_listing(listing, dealer_id=config.dealer_id, source=SOURCE_FEED, seen_at=seen_at)
            except Exception as exc:
                logger.warning("Skipping feed row %d for dealer %s: %s", index, config.dealer_id, exc)
                continue
            progress.rows += 1
        return SyncResult(ok=True, rows=progress.rows, mode=MODE_FEED)

    async def _sync_scrape(self, config: DealerSyncConfig, progress: _Progress) -> SyncResult:
        try:
            urls = await self.crawler.discover_listing_urls(config.inventory_url, config.sitemap_url)
        except FetchError as exc:
            logger.warning("Listing discovery failed for dealer %s: %s", config.dealer_id, exc)
            return SyncResult(ok=False, mode=MODE_SCRAPE, error=str(exc))

        if not urls:
            return SyncResult(ok=False, mode=MODE_SCRAPE, error=ERROR_NO_URLS)

        progress.scanned = len(urls)
        seen_at = datetime.now(timezone.utc)
        async for url, listing in self.crawler.crawl(urls):
            if listing is None:
                continue
            try:
                upsert_listing(listing, dealer_id=config.dealer_id, source=SOURCE_SCRAPE, seen_at=seen_at)
            except Exception as exc:
                logger.warning("Skipping %s for dealer %s: %s", url, config.dealer_id, exc)
                continue
            progress.rows += 1
        return SyncResult(ok=True, rows=progress.rows, mode=MODE_SCRAPE, scanned=progress.scanned)

    def _record_run(self, dealer_id: int, result: SyncResult, started_at: datetime) -> None:
        completed_at = datetime.now(timezone.utc)
        try:
            with session_scope() as session:
                session.add(
                    models.SyncRun(
                        dealer_id=dealer_id,
                        mode=result.mode,
                        ok=result.ok,
                        rows=result.rows,
                        scanned=result.scanned,
                        error=result.error,
                        started_at=started_at,
                        completed_at=completed_at,
                    )
                )
                if result.ok:
                    dealer = session.get(models.Dealer, dealer_id)
                    if dealer is not None:
                        dealer.last_synced_at = completed_at
        except Exception:
            logger.exception("Could not record sync run for dealer %s", dealer_id)

    async def sync_all(
        self,
        mode: str = MODE_AUTO,
        limit: Optional[int] = None,
        offset: int = 0,
        cleanup: bool = True,
        sold_after_days: Optional[int] = None,
        expire_after_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Sync a slice of configured dealers one after another, then sweep stale listings."""
        max_limit = max(1, settings.sync_max_dealers_per_run)
        limit = min(max(1, limit if limit is not None else max_limit), max_limit)
        offset = max(0, offset)

        dealers = load_syncable_dealers()
        batch = dealers[offset : offset + limit]

        results: List[Dict[str, Any]] = []
        for config in batch:
            result = await self.sync_dealer(config, mode)
            results.append({"dealer_id": config.dealer_id, **result.as_dict()})

        cleanup_result = None
        if cleanup:
            cleanup_result = run_cleanup(
                sold_after_days=sold_after_days,
                expire_after_days=expire_after_days,
            ).as_dict()

        return {
            "ok": True,
            "total": len(dealers),
            "processed": len(batch),
            "offset": offset,
            "limit": limit,
            "results": results,
            "cleanup": cleanup_result,
        }


def load_syncable_dealers() -> List[DealerSyncConfig]:
    """Active dealers with any feed, inventory, sitemap, scrape or website URL."""
    with session_scope() as session:
        stmt = (
            select(models.Dealer)
            .where(
                or_(models.Dealer.is_active.is_(True), models.Dealer.is_active.is_(None)),
                or_(
                    models.Dealer.feed_url.isnot(None),
                    models.Dealer.inventory_url.isnot(None),
                    models.Dealer.sitemap_url.isnot(None),
                    models.Dealer.scrape_url.isnot(None),
                    models.Dealer.website_url.isnot(None),
                ),
            )
            .order_by(models.Dealer.id)
        )
        configs = [DealerSyncConfig.from_dealer(dealer) for dealer in session.scalars(stmt)]
    return [config for config in configs if config.feed_url or config.inventory_url or config.sitemap_url]


def load_dealer_config(dealer_id: int) -> Optional[DealerSyncConfig]:
    with session_scope() as session:
        dealer = session.get(models.Dealer, dealer_id)
        if dealer is None:
            return None
        return DealerSyncConfig.from_dealer(dealer)
