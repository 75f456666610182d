from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from backend.app.core.settings import settings
from backend.app.db.models import Base


def _engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"future": True, "echo": False, "pool_pre_ping": True}
    if make_url(database_url).get_backend_name() == "sqlite":
        # API handlers and the sync worker may share pooled connections across threads.
        options["connect_args"] = {"check_same_thread": False}
    return options


ENGINE = create_engine(settings.database_url, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(bind=ENGINE, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False)


def create_schema() -> None:
    """Create missing tables directly from the models (local runs and tests)."""
    Base.metadata.create_all(ENGINE)


@contextmanager
def session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
