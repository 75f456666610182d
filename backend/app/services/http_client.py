from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import httpx

from backend.app.core.settings import settings

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class FetchError(Exception):
    """Raised when a dealer URL cannot be fetched."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchRetryableError(FetchError):
    """Raised when a retryable HTTP status/error is encountered."""


@dataclass
class FetchedDocument:
    url: str
    status_code: int
    content_type: str
    text: str


class AsyncTransport(Protocol):
    async def get(
        self,
        url: str,
        headers: Dict[str, str],
        timeout: float,
    ) -> httpx.Response: ...

    async def close(self) -> None: ...


class HttpxTransport:
    """httpx-based transport with connection pooling."""

    def __init__(self):
        self._client = httpx.AsyncClient(follow_redirects=True, timeout=None)

    async def get(
        self,
        url: str,
        headers: Dict[str, str],
        timeout: float,
    ) -> httpx.Response:
        return await self._client.get(url, headers=headers, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()


class DealerSiteClient:
    """Async GET client for dealer feeds, sitemaps and pages.

    Every request carries a timeout; dealer endpoints are untrusted and may
    stall indefinitely otherwise.
    """

    def __init__(
        self,
        *,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: int = 2,
        backoff_base: float = 0.5,
        transport: Optional[AsyncTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.scrape_timeout_seconds
        if not self.timeout or self.timeout <= 0:
            raise ValueError("A positive request timeout is required.")
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self._transport = transport or HttpxTransport()
        self._owns_transport = transport is None
        self._headers = {"User-Agent": user_agent or settings.scrape_user_agent}

    async def __aenter__(self) -> "DealerSiteClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_transport:
            await self._transport.close()

    async def fetch(self, url: str) -> FetchedDocument:
        attempts = 0
        last_error: Optional[Exception] = None
        while attempts < self.max_attempts:
            try:
                response = await self._transport.get(url, headers=self._headers, timeout=self.timeout)
            except httpx.RequestError as exc:
                last_error = exc
                await self._maybe_wait(attempts)
                attempts += 1
                continue

            if response.status_code in RETRYABLE_STATUS:
                last_error = FetchRetryableError(
                    f"Fetch failed ({response.status_code})", status_code=response.status_code
                )
                await self._maybe_wait(attempts)
                attempts += 1
                continue

            if not response.is_success:
                raise FetchError(f"Fetch failed ({response.status_code})", status_code=response.status_code)

            return FetchedDocument(
                url=str(response.url),
                status_code=response.status_code,
                content_type=response.headers.get("content-type", ""),
                text=response.text,
            )

        if isinstance(last_error, FetchError):
            raise last_error
        if last_error:
            raise FetchError(f"Fetch failed ({type(last_error).__name__})") from last_error
        raise FetchError("Fetch failed")

    async def _maybe_wait(self, attempt: int) -> None:
        if attempt >= self.max_attempts - 1:
            return
        delay = self.backoff_base * (2 ** attempt)
        jitter = random.uniform(0, 0.3)
        await asyncio.sleep(delay + jitter)
