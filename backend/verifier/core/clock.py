"""UTC time helpers shared by services and the sweep."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return a tz-aware UTC datetime.

    Some drivers (SQLite) hand back naive datetimes even for
    DateTime(timezone=True) columns; everything we store is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
