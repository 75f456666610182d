import asyncio
from pathlib import Path

import pytest
from sqlalchemy import delete, func, select

from backend.app.core.rate_limit import RequestPacer
from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services import sync_orchestrator as orchestrator_module
from backend.app.services.crawler import CrawlerConfig
from backend.app.services.sync_orchestrator import (
    DealerSyncConfig,
    DealerSyncOrchestrator,
    SyncResult,
    load_syncable_dealers,
)

FIXTURE_DIR = Path(__file__).parents[1] / "parsers" / "fixtures" / "dealer_site"

FEED_URL = "https://dealer.test/feed.csv"
FEED_CSV = "stock_id,make,model,price\nA1,Honda,City,950000\nA2,,Civic,800000"


def _truncate_tables():
    with session_scope() as session:
        session.execute(delete(models.SyncRun))
        session.execute(delete(models.Listing))
        session.execute(delete(models.Dealer))


def _create_dealer(**urls) -> int:
    with session_scope() as session:
        dealer = models.Dealer(name=urls.pop("name", "Sync Dealer"), **urls)
        session.add(dealer)
        session.flush()
        dealer_id = dealer.id
    return dealer_id


def _listings(dealer_id: int):
    with session_scope() as session:
        return session.scalars(
            select(models.Listing).where(models.Listing.dealer_id == dealer_id).order_by(models.Listing.stock_id)
        ).all()


def _orchestrator(client, **kwargs) -> DealerSyncOrchestrator:
    config = CrawlerConfig(max_listings=60, delay_seconds=0)
    return DealerSyncOrchestrator(client, config, pacer=RequestPacer(0), **kwargs)


@pytest.mark.asyncio
async def test_feed_sync_persists_valid_rows_only(fake_site):
    _truncate_tables()
    dealer_id = _create_dealer(feed_url=FEED_URL)
    _transport, client = fake_site({FEED_URL: (200, FEED_CSV, "text/csv")})

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=dealer_id, feed_url=FEED_URL))

    assert result.as_dict() == {"ok": True, "rows": 1, "mode": "feed"}
    rows = _listings(dealer_id)
    assert [row.stock_id for row in rows] == ["A1"]
    assert rows[0].make == "Honda"
    assert rows[0].source == "dealer_feed"
    assert rows[0].last_seen_at is not None


@pytest.mark.asyncio
async def test_feed_sync_is_idempotent(fake_site):
    _truncate_tables()
    dealer_id = _create_dealer(feed_url=FEED_URL)
    _transport, client = fake_site({FEED_URL: (200, FEED_CSV, "text/csv")})
    orchestrator = _orchestrator(client)
    config = DealerSyncConfig(dealer_id=dealer_id, feed_url=FEED_URL)

    await orchestrator.sync_dealer(config)
    await orchestrator.sync_dealer(config)

    with session_scope() as session:
        count = session.scalar(
            select(func.count()).select_from(models.Listing).where(models.Listing.dealer_id == dealer_id)
        )
        runs = session.scalar(select(func.count()).select_from(models.SyncRun).where(models.SyncRun.dealer_id == dealer_id))
        dealer = session.get(models.Dealer, dealer_id)
        assert dealer.last_synced_at is not None
    assert count == 1
    assert runs == 2


@pytest.mark.asyncio
async def test_feed_fetch_failure_is_reported(fake_site):
    _truncate_tables()
    dealer_id = _create_dealer(feed_url=FEED_URL)
    _transport, client = fake_site({FEED_URL: (404, "gone", "text/plain")})

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=dealer_id, feed_url=FEED_URL))

    assert result.ok is False
    assert result.mode == "feed"
    assert "404" in result.error
    with session_scope() as session:
        run = session.scalars(select(models.SyncRun).where(models.SyncRun.dealer_id == dealer_id)).one()
        assert run.ok is False
        assert session.get(models.Dealer, dealer_id).last_synced_at is None


@pytest.mark.asyncio
async def test_missing_urls_is_a_configuration_error(fake_site):
    transport, client = fake_site({})
    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=999))
    assert result.as_dict() == {"ok": False, "error": "No feed or inventory URL configured"}
    assert transport.calls == []


@pytest.mark.asyncio
async def test_scrape_sync_extracts_and_upserts(fake_site):
    _truncate_tables()
    inventory_url = "https://dealer.example/used-cars"
    dealer_id = _create_dealer(inventory_url=inventory_url, feed_url=FEED_URL)
    detail_html = (FIXTURE_DIR / "vehicle_detail.html").read_text(encoding="utf-8")
    _transport, client = fake_site(
        {
            inventory_url: (200, (FIXTURE_DIR / "inventory_page.html").read_text(encoding="utf-8"), "text/html"),
            "https://dealer.example/used/maruti-swift-vxi-1001": (200, detail_html, "text/html"),
            "https://dealer.example/used/honda-city-zx-1002": (200, "<html></html>", "text/html"),
        }
    )
    config = DealerSyncConfig(dealer_id=dealer_id, feed_url=FEED_URL, inventory_url=inventory_url)

    result = await _orchestrator(client).sync_dealer(config, mode="scrape")

    assert result.as_dict() == {"ok": True, "rows": 1, "mode": "scrape", "scanned": 3}
    rows = _listings(dealer_id)
    assert [row.stock_id for row in rows] == ["PM-CRETA-0042"]
    assert rows[0].source == "dealer_scrape"


@pytest.mark.asyncio
async def test_scrape_without_candidate_urls(fake_site):
    inventory_url = "https://dealer.example/inventory"
    _transport, client = fake_site({inventory_url: (200, "<html><body>Coming soon</body></html>", "text/html")})

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=5, inventory_url=inventory_url))

    assert result.ok is False
    assert result.error == "No listing URLs found"


@pytest.mark.asyncio
async def test_scrape_discovery_failure(fake_site):
    inventory_url = "https://dealer.example/inventory"
    _transport, client = fake_site({inventory_url: (403, "denied", "text/html")})

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=5, inventory_url=inventory_url))

    assert result.ok is False
    assert "403" in result.error


@pytest.mark.asyncio
async def test_deadline_reports_timeout(fake_site, monkeypatch):
    _transport, client = fake_site({})

    async def slow_fetch(_client, _url):
        await asyncio.sleep(5)
        return []

    monkeypatch.setattr(orchestrator_module, "fetch_feed", slow_fetch)
    orchestrator = _orchestrator(client, deadline_seconds=0.05)

    result = await orchestrator.sync_dealer(DealerSyncConfig(dealer_id=5, feed_url=FEED_URL))

    assert result.ok is False
    assert result.error == "Sync timed out"
    assert result.rows == 0


@pytest.mark.asyncio
async def test_unexpected_errors_never_escape(fake_site, monkeypatch):
    _transport, client = fake_site({})

    async def broken(_client, _url):
        raise KeyError("surprise")

    monkeypatch.setattr(orchestrator_module, "fetch_feed", broken)

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=5, feed_url=FEED_URL))

    assert result.as_dict() == {"ok": False, "mode": "feed", "error": "Sync failed"}


@pytest.mark.asyncio
async def test_failed_row_upsert_is_skipped(fake_site, monkeypatch):
    _truncate_tables()
    dealer_id = _create_dealer(feed_url=FEED_URL)
    csv = "stock_id,make,model\nB1,Kia,Seltos\nB2,Kia,Sonet\n"
    _transport, client = fake_site({FEED_URL: (200, csv, "text/csv")})
    real_upsert = orchestrator_module.upsert_listing

    def flaky_upsert(listing, **kwargs):
        if listing.stock_id == "B1":
            raise RuntimeError("constraint violated")
        real_upsert(listing, **kwargs)

    monkeypatch.setattr(orchestrator_module, "upsert_listing", flaky_upsert)

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=dealer_id, feed_url=FEED_URL))

    assert result.ok is True
    assert result.rows == 1
    assert [row.stock_id for row in _listings(dealer_id)] == ["B2"]


@pytest.mark.asyncio
async def test_malformed_photo_url_keeps_the_row_and_later_rows(fake_site):
    _truncate_tables()
    dealer_id = _create_dealer(feed_url=FEED_URL)
    csv = "stock_id,make,model,photos\nP1,Honda,City,http://[bad\nP2,Maruti,Swift,https://cdn.example/a.jpg\n"
    _transport, client = fake_site({FEED_URL: (200, csv, "text/csv")})

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=dealer_id, feed_url=FEED_URL))

    assert result.as_dict() == {"ok": True, "rows": 2, "mode": "feed"}
    rows = _listings(dealer_id)
    assert [row.stock_id for row in rows] == ["P1", "P2"]
    assert rows[0].photo_urls == []
    assert rows[1].photo_urls == ["https://cdn.example/a.jpg"]


@pytest.mark.asyncio
async def test_row_that_fails_to_normalize_is_skipped(fake_site, monkeypatch):
    _truncate_tables()
    dealer_id = _create_dealer(feed_url=FEED_URL)
    csv = "stock_id,make,model\nN1,Tata,Nexon\nN2,Tata,Punch\n"
    _transport, client = fake_site({FEED_URL: (200, csv, "text/csv")})
    real_normalize = orchestrator_module.normalize

    def fragile_normalize(record):
        if record.row.get("stock_id") == "N1":
            raise ValueError("Invalid IPv6 URL")
        return real_normalize(record)

    monkeypatch.setattr(orchestrator_module, "normalize", fragile_normalize)

    result = await _orchestrator(client).sync_dealer(DealerSyncConfig(dealer_id=dealer_id, feed_url=FEED_URL))

    assert result.ok is True
    assert result.rows == 1
    assert [row.stock_id for row in _listings(dealer_id)] == ["N2"]


@pytest.mark.parametrize("requested", ["SCRAPE", " Scrape "])
def test_requested_mode_is_case_insensitive(requested):
    config = DealerSyncConfig(dealer_id=1, feed_url=FEED_URL, inventory_url="https://dealer.test/used")
    assert config.resolve_mode(requested) == "scrape"
    assert config.resolve_mode("FEED") == "feed"


def test_config_from_dealer_falls_back_to_scrape_and_website_urls():
    dealer = models.Dealer(id=3, name="Fallback", scrape_url=" ", website_url="https://dealer.example/")
    config = DealerSyncConfig.from_dealer(dealer)
    assert config.inventory_url == "https://dealer.example/"
    assert config.feed_url is None
    assert config.resolve_mode("auto") == "scrape"


def test_result_dict_omits_unset_fields():
    assert SyncResult(ok=True, rows=0, mode="feed").as_dict() == {"ok": True, "rows": 0, "mode": "feed"}


@pytest.mark.asyncio
async def test_sync_all_slices_dealers_and_runs_cleanup(fake_site, monkeypatch):
    _truncate_tables()
    first = _create_dealer(name="One", feed_url="https://one.test/feed.csv")
    second = _create_dealer(name="Two", feed_url="https://two.test/feed.csv")
    _create_dealer(name="No urls")
    _create_dealer(name="Inactive", feed_url="https://off.test/feed.csv", is_active=False)
    _transport, client = fake_site(
        {
            "https://one.test/feed.csv": (200, "id,make,model\n1,Tata,Punch\n", "text/csv"),
            "https://two.test/feed.csv": (200, "id,make,model\n2,Tata,Nexon\n", "text/csv"),
        }
    )
    cleanup_calls = []
    real_cleanup = orchestrator_module.run_cleanup

    def tracking_cleanup(**kwargs):
        cleanup_calls.append(kwargs)
        return real_cleanup(**kwargs)

    monkeypatch.setattr(orchestrator_module, "run_cleanup", tracking_cleanup)
    orchestrator = _orchestrator(client)

    summary = await orchestrator.sync_all(limit=1, offset=1, sold_after_days=10)

    assert summary["total"] == 2
    assert summary["processed"] == 1
    assert summary["results"] == [{"dealer_id": second, "ok": True, "rows": 1, "mode": "feed"}]
    assert summary["cleanup"]["sold_after_days"] == 10
    assert cleanup_calls == [{"sold_after_days": 10, "expire_after_days": None}]
    assert [config.dealer_id for config in load_syncable_dealers()] == [first, second]

    summary = await orchestrator.sync_all(limit=500, cleanup=False)
    assert summary["limit"] == 15
    assert summary["processed"] == 2
    assert summary["cleanup"] is None
