"""Time and timezone utilities for article timestamps."""

from datetime import datetime, timezone
from typing import Iterable, Optional


def normalize_timezone(dt: datetime, target_tz: timezone = timezone.utc) -> datetime:
    """
    Normalize datetime to target timezone.

    Args:
        dt: Input datetime
        target_tz: Target timezone (default UTC)

    Returns:
        Datetime in target timezone
    """
    if dt.tzinfo is None:
        # Assume UTC if no timezone
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(target_tz)


def get_current_utc_time() -> datetime:
    """Get current time in UTC."""
    return datetime.now(timezone.utc)


def get_age_hours(dt: datetime, now: Optional[datetime] = None) -> float:
    """Get age of datetime in hours from now (never negative)."""
    now = normalize_timezone(now) if now else get_current_utc_time()
    delta = now - normalize_timezone(dt)
    return max(0.0, delta.total_seconds() / 3600)


def hours_between(a: datetime, b: datetime) -> float:
    """Absolute distance between two datetimes in hours."""
    delta = normalize_timezone(a) - normalize_timezone(b)
    return abs(delta.total_seconds()) / 3600


def latest(timestamps: Iterable[datetime]) -> Optional[datetime]:
    """Most recent timestamp, or None for an empty iterable."""
    normalized = [normalize_timezone(ts) for ts in timestamps if ts is not None]
    return max(normalized) if normalized else None
