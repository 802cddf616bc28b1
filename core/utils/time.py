"""
Time Utilities

Upstream providers and clients exchange timestamps in different formats:
- CoinGecko market charts: milliseconds since epoch (e.g., 1704110400000)
- CoinGecko simple prices / CMC: seconds since epoch (e.g., 1704110400)
- Persisted records: timezone-aware UTC datetimes

The helpers here keep those conversions in one place.
"""

from datetime import datetime, timezone
from typing import Optional

DAY_MS = 24 * 60 * 60 * 1000


def datetime_to_timestamp(dt: datetime, milliseconds: bool = False) -> int:
    """
    Convert a datetime object to Unix timestamp.

    Args:
        dt: Datetime object (can be naive or timezone-aware)
        milliseconds: If True, return milliseconds; if False, return seconds

    Returns:
        int: Unix timestamp in seconds or milliseconds

    Examples:
        >>> dt = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        >>> datetime_to_timestamp(dt)
        1704110400

        >>> datetime_to_timestamp(dt, milliseconds=True)
        1704110400000

    Notes:
        - If datetime is naive (no timezone), UTC is assumed
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    if milliseconds:
        return int(dt.timestamp() * 1000)

    return int(dt.timestamp())


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """
    Get current UTC timestamp.

    Examples:
        >>> current_utc_timestamp()
        1704110400

        >>> current_utc_timestamp(milliseconds=True)
        1704110400000
    """
    return datetime_to_timestamp(datetime.now(timezone.utc), milliseconds)


def current_utc_datetime() -> datetime:
    """Get current time as a timezone-aware datetime in UTC."""
    return datetime.now(timezone.utc)


def age_seconds(dt: Optional[datetime], now: Optional[datetime] = None) -> float:
    """
    Seconds elapsed since `dt`.

    A missing datetime is treated as infinitely old so callers can use a
    single `age_seconds(x) > max_age` staleness check.
    """
    if dt is None:
        return float("inf")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    now = now or current_utc_datetime()
    return (now - dt).total_seconds()
