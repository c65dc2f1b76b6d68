"""UTC timestamp helpers.

Timestamps are persisted as fixed-width ISO 8601 strings
(``YYYY-MM-DDTHH:MM:SS.ffffffZ``). The fixed width keeps string comparison in
SQL consistent with chronological order, which the task queue relies on when
selecting due tasks.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return ``dt`` as aware UTC; naive values are taken to already be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_storage(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime for a string timestamp column.

    Example:
        >>> to_storage(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00.000000Z'
    """
    if dt is None:
        return None
    return ensure_utc(dt).strftime(STORAGE_FORMAT)


def from_storage(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    raw = value.rstrip("Z")
    try:
        dt = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S")
    return dt.replace(tzinfo=timezone.utc)


def storage_now(offset_seconds: float = 0.0) -> str:
    """Storage-formatted timestamp for now, optionally shifted into the future."""
    return to_storage(utc_now() + timedelta(seconds=offset_seconds))


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string (with or without ``Z``) into aware UTC.

    Returns None for empty or unparseable input.
    """
    if not value or not value.strip():
        return None
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(cleaned))
    except ValueError:
        return None
