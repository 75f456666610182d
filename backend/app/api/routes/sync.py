from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from backend.app.api.deps import get_orchestrator, require_token
from backend.app.core.settings import settings
from backend.app.services.sync_orchestrator import DealerSyncOrchestrator, load_dealer_config

router = APIRouter()

SyncMode = Literal["auto", "feed", "scrape"]


# Declared before "/{dealer_id}" so "all" is never read as a dealer id.
@router.post("/all")
async def sync_all(
    mode: SyncMode = "auto",
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    cleanup: bool = True,
    sold_after_days: Optional[int] = None,
    expire_after_days: Optional[int] = None,
    token: Optional[str] = None,
    x_sync_token: Optional[str] = Header(default=None),
    orchestrator: DealerSyncOrchestrator = Depends(get_orchestrator),
):
    require_token(settings.sync_secret, x_sync_token, token)
    return await orchestrator.sync_all(
        mode=mode,
        limit=limit,
        offset=offset,
        cleanup=cleanup,
        sold_after_days=sold_after_days,
        expire_after_days=expire_after_days,
    )


@router.post("/{dealer_id}")
async def sync_dealer(
    dealer_id: int,
    mode: SyncMode = "auto",
    token: Optional[str] = None,
    x_sync_token: Optional[str] = Header(default=None),
    orchestrator: DealerSyncOrchestrator = Depends(get_orchestrator),
):
    require_token(settings.sync_secret, x_sync_token, token)
    config = load_dealer_config(dealer_id)
    if config is None:
        raise HTTPException(status_code=404, detail="Dealer not found")

    result = await orchestrator.sync_dealer(config, mode)
    return JSONResponse(status_code=200 if result.ok else 400, content=result.as_dict())
