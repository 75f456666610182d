import os
import tempfile

# Must run before any backend module reads settings.
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tempfile.mkdtemp()}/inventory_sync.db"
os.environ.setdefault("SCRAPE_DELAY_MS", "0")

import httpx  # noqa: E402
import pytest  # noqa: E402

from backend.app.db.session import create_schema  # noqa: E402
from backend.app.services.http_client import DealerSiteClient  # noqa: E402

create_schema()


class FakeSiteTransport:
    """Serves canned responses keyed by URL; unknown URLs get a 404.

    A route value is ``(status, body, content_type)``, an exception to raise,
    or a list of those consumed one call at a time.
    """

    def __init__(self, routes):
        self.routes = dict(routes)
        self.calls = []

    async def get(self, url, headers, timeout):
        self.calls.append(url)
        entry = self.routes.get(url)
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if entry is None:
            entry = (404, "not found", "text/plain")
        if isinstance(entry, Exception):
            raise entry
        status, body, content_type = entry
        return httpx.Response(
            status_code=status,
            text=body,
            headers={"content-type": content_type},
            request=httpx.Request("GET", url),
        )

    async def close(self):
        return None


@pytest.fixture
def fake_site():
    def build(routes):
        transport = FakeSiteTransport(routes)
        client = DealerSiteClient(transport=transport, timeout=5, backoff_base=0)
        return transport, client

    return build
