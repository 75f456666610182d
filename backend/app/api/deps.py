from __future__ import annotations

import hmac
from typing import AsyncIterator, Optional

from fastapi import HTTPException

from backend.app.services.sync_orchestrator import DealerSyncOrchestrator


def require_token(secret: Optional[str], *candidates: Optional[str]) -> None:
    """Reject the request unless one of ``candidates`` matches the shared secret."""
    if not secret:
        raise HTTPException(status_code=400, detail="Sync secret is not configured")
    for candidate in candidates:
        if candidate and hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8")):
            return
    raise HTTPException(status_code=401, detail="Invalid token")


async def get_orchestrator() -> AsyncIterator[DealerSyncOrchestrator]:
    orchestrator = DealerSyncOrchestrator()
    try:
        yield orchestrator
    finally:
        await orchestrator.aclose()
