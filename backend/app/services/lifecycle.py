"""Lifecycle sweep that ages long-unseen ``available`` listings out of the catalogue."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.settings import settings
from backend.app.db import models
from backend.app.db.session import session_scope

logger = logging.getLogger(__name__)

LOAD_LIMIT = 10_000
UPDATE_CHUNK_SIZE = 300
SECONDS_PER_DAY = 24 * 60 * 60

STATUS_AVAILABLE = "available"
STATUS_SOLD = "sold"
STATUS_EXPIRED = "expired"


@dataclass
class CleanupResult:
    checked: int
    sold: int
    expired: int
    dry_run: bool
    sold_after_days: int
    expire_after_days: int
    notes: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def resolve_thresholds(
    sold_after_days: Optional[int] = None,
    expire_after_days: Optional[int] = None,
) -> Tuple[int, int]:
    sold = sold_after_days if sold_after_days is not None else settings.listing_sold_after_days
    expire = expire_after_days if expire_after_days is not None else settings.listing_expire_after_days
    sold = max(1, int(sold))
    return sold, max(sold + 1, int(expire))


def _ensure_utc(dt: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _last_activity(row: Any) -> Optional[datetime]:
    stamp = row.last_seen_at or row.updated_at or row.created_at
    return _ensure_utc(stamp) if stamp is not None else None


def _chunks(ids: Sequence[int], size: int = UPDATE_CHUNK_SIZE) -> Iterator[Sequence[int]]:
    for start in range(0, len(ids), size):
        yield ids[start : start + size]


def _load_available() -> List[Any]:
    with session_scope() as session:
        stmt = (
            select(
                models.Listing.id,
                models.Listing.last_seen_at,
                models.Listing.updated_at,
                models.Listing.created_at,
            )
            .where(models.Listing.status == STATUS_AVAILABLE)
            .order_by(models.Listing.id)
            .limit(LOAD_LIMIT)
        )
        return list(session.execute(stmt).all())


def _update_status(ids: Sequence[int], status: str, now: datetime) -> int:
    """Move a chunk of still-available listings to ``status``; returns rows changed."""
    with session_scope() as session:
        result = session.execute(
            update(models.Listing)
            .where(models.Listing.id.in_(list(ids)), models.Listing.status == STATUS_AVAILABLE)
            .values(status=status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class _PartialUpdate(Exception):
    def __init__(self, changed: int, handled: List[int], cause: Exception):
        super().__init__(str(cause))
        self.changed = changed
        self.handled = handled
        self.cause = cause


def _apply(ids: Sequence[int], status: str, now: datetime) -> Tuple[int, List[int]]:
    """Update ``ids`` chunk by chunk; returns the row count and the ids handled so far.

    A failing chunk raises after the earlier chunks have been committed.
    """
    changed = 0
    handled: List[int] = []
    for chunk in _chunks(ids):
        try:
            changed += _update_status(chunk, status, now)
        except SQLAlchemyError as exc:
            raise _PartialUpdate(changed, handled, exc) from exc
        handled.extend(chunk)
    return changed, handled


def run_cleanup(
    sold_after_days: Optional[int] = None,
    expire_after_days: Optional[int] = None,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> CleanupResult:
    sold_days, expire_days = resolve_thresholds(sold_after_days, expire_after_days)
    now = _ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    result = CleanupResult(
        checked=0,
        sold=0,
        expired=0,
        dry_run=dry_run,
        sold_after_days=sold_days,
        expire_after_days=expire_days,
    )

    try:
        rows = _load_available()
    except SQLAlchemyError as exc:
        logger.exception("Lifecycle sweep could not load listings")
        result.notes.append(f"failed_to_load_listings: {exc}")
        return result

    sold_ids: List[int] = []
    expired_ids: List[int] = []
    for row in rows:
        stamp = _last_activity(row)
        if stamp is None:
            continue
        age_days = (now - stamp).total_seconds() / SECONDS_PER_DAY
        if age_days >= expire_days:
            expired_ids.append(row.id)
        elif age_days >= sold_days:
            sold_ids.append(row.id)

    result.checked = len(rows)
    if dry_run:
        result.sold = len(sold_ids)
        result.expired = len(expired_ids)
        return result

    try:
        result.expired, _handled = _apply(expired_ids, STATUS_EXPIRED, now)
        result.notes.append(f"expired_updated={result.expired}")
    except _PartialUpdate as exc:
        logger.warning("Expired update failed, folding remaining ids into sold: %s", exc.cause)
        result.expired = exc.changed
        result.notes.append(f"expired_update_failed: {exc.cause}")
        result.notes.append("fallback_to_sold_for_expired=true")
        done = set(exc.handled)
        sold_ids.extend(listing_id for listing_id in expired_ids if listing_id not in done)

    try:
        result.sold, _handled = _apply(sold_ids, STATUS_SOLD, now)
    except _PartialUpdate as exc:
        logger.warning("Sold update failed: %s", exc.cause)
        result.sold = exc.changed
        result.notes.append(f"sold_update_failed: {exc.cause}")

    logger.info(
        "Lifecycle sweep checked=%d sold=%d expired=%d",
        result.checked,
        result.sold,
        result.expired,
    )
    return result
