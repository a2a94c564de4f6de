"""Time utilities."""

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive values as UTC and convert aware values to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_to_seconds(value: datetime) -> datetime:
    """Drop sub-second precision so the value round-trips through any backend."""
    return ensure_utc(value).replace(microsecond=0)


def resolve_zone(name: str | None) -> tzinfo:
    if not name or name.upper() in ("UTC", "Z"):
        return timezone.utc
    return ZoneInfo(name)
