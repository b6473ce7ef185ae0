"""
School Platform Quiz Engine
Shared helper utilities
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from ...config import get_settings


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging from application settings"""
    settings = get_settings()

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=settings.LOG_FORMAT
    )

    # SQLAlchemy echoes through its own logger when DB_ECHO is set
    if not settings.DB_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching stored timestamps"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an incoming datetime to naive UTC; naive input is taken as UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Generate an opaque entity identifier"""
    return str(uuid.uuid4())


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


__all__ = ["setup_logging", "utcnow", "to_naive_utc", "new_id", "isoformat"]
