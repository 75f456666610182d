"""Process-wide logging setup shared by the API and the CLI."""
import logging

from backend.app.core.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def configure_logging(level: str | None = None) -> None:
    name = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, name, logging.INFO))
