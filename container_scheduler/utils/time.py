from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return `dt` as an aware UTC datetime (naive values are assumed to be UTC)."""
    if dt is None:
        return None
    # SQLite doesn't preserve tzinfo; normalize to UTC-aware.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso_utc(dt: Optional[datetime]) -> Optional[str]:
    dt = ensure_utc(dt)
    if dt is None:
        return None
    # RFC3339 with 'Z' and milliseconds for consistent client parsing.
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
