"""UTC datetime utilities."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def from_unix(seconds: int) -> datetime:
    """Ledger timestamps are uint256 seconds since epoch."""
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (as returned by TIMESTAMP columns) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
