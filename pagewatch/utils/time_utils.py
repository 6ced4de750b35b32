"""Time helpers. All engine timestamps are timezone-aware UTC."""

from datetime import datetime

import pytz


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)
