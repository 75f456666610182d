from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.normalize import CanonicalListing

CONFLICT_COLUMNS = ["dealer_id", "stock_id"]
IMMUTABLE_COLUMNS = {"id", "dealer_id", "stock_id", "created_at"}


def _ensure_utc(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return datetime.now(timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (TypeError, ValueError, ArithmeticError):
        return None


def _dialect_insert(session: Session):
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def upsert_listing(
    listing: CanonicalListing,
    *,
    dealer_id: int,
    source: str,
    seen_at: Optional[datetime] = None,
) -> None:
    """Insert or update one listing keyed by ``(dealer_id, stock_id)``.

    Each call commits on its own, so a failing row never rolls back rows that
    were already written for the same dealer.
    """
    now = _ensure_utc(seen_at)
    values: Dict[str, Any] = listing.to_row(dealer_id=dealer_id, source=source, seen_at=now)
    values["price"] = _as_decimal(values.get("price"))
    values["updated_at"] = now

    with session_scope() as session:
        insert = _dialect_insert(session)
        stmt = insert(models.Listing.__table__).values(**values)
        update_columns = {
            column: stmt.excluded[column] for column in values if column not in IMMUTABLE_COLUMNS
        }
        session.execute(stmt.on_conflict_do_update(index_elements=CONFLICT_COLUMNS, set_=update_columns))
