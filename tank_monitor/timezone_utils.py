"""
Tank Monitor - Timezone Utilities

Provides consistent timezone handling across the sync engine.

IMPORTANT: All internal timestamps are timezone-aware UTC.
Site-local time is only used for the business-hours window.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional, Union
from zoneinfo import ZoneInfo

UTC = timezone.utc

# Default timezone for site business hours
DEFAULT_SITE_TZ = "America/Chicago"


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


@lru_cache(maxsize=64)
def get_zone(name: Optional[str] = None) -> ZoneInfo:
    """Resolve an IANA timezone name (cached)"""
    return ZoneInfo(name or DEFAULT_SITE_TZ)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware UTC

    Args:
        dt: Input datetime (can be naive, UTC, or local)

    Returns:
        Timezone-aware UTC datetime, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive - upstream and store both speak UTC
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """UTC wall-clock without tzinfo, the form persisted in DATETIME columns"""
    return ensure_utc(dt).replace(tzinfo=None)


def utc_to_local(dt: datetime, tz: Union[str, ZoneInfo, None] = None) -> datetime:
    """
    Convert UTC datetime to a site's local timezone

    Args:
        dt: UTC datetime (can be naive or aware)
        tz: Target timezone name or ZoneInfo. Defaults to DEFAULT_SITE_TZ

    Returns:
        Timezone-aware datetime in target timezone
    """
    target_tz = tz if isinstance(tz, ZoneInfo) else get_zone(tz)
    return ensure_utc(dt).astimezone(target_tz)


def parse_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """
    Parse an upstream timestamp into aware UTC.

    Accepts ISO-8601 strings (with or without "Z"/offset), epoch seconds,
    or datetimes. Raises ValueError/TypeError when unparseable.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise TypeError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def hours_ago(hours: float, now: Optional[datetime] = None) -> datetime:
    """UTC datetime N hours before now"""
    return (now or utc_now()) - timedelta(hours=hours)

