from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header

from backend.app.api.deps import require_token
from backend.app.core.settings import settings
from backend.app.services.lifecycle import run_cleanup

router = APIRouter()


@router.post("/maintenance")
def listing_maintenance(
    sold_after_days: Optional[int] = None,
    expire_after_days: Optional[int] = None,
    dry_run: bool = False,
    token: Optional[str] = None,
    x_maintenance_token: Optional[str] = Header(default=None),
    x_sync_token: Optional[str] = Header(default=None),
):
    """Age stale available listings into sold/expired."""
    secret = settings.listing_maintenance_secret or settings.sync_secret
    require_token(secret, x_maintenance_token, x_sync_token, token)
    result = run_cleanup(
        sold_after_days=sold_after_days,
        expire_after_days=expire_after_days,
        dry_run=dry_run,
    )
    return {"ok": True, **result.as_dict()}
