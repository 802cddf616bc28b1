"""
History Canonicalizer / Slicer

Provider rate limits make fetching every requested range prohibitive, so
every supported request funnels into one canonical fetch per coin:

    requested days      canonical fetch
    7, 30, 90, 365  ->  365 days, daily
    max             ->  max, daily      (own, longer TTL)

Shorter ranges are derived from the cached canonical series by slicing:
the right edge is the last point's timestamp and only points at or after
`edge - days` are kept, in their original order.
"""

from typing import Optional, Tuple

from core.errors import NotAvailableError
from core.schemas import HistoryResponse
from core.utils.time import DAY_MS

CANONICAL_DAYS = "365"
CANONICAL_INTERVAL = "daily"
MAX_DAYS = "max"

CANONICAL_HISTORY = {
    "7": (CANONICAL_DAYS, CANONICAL_INTERVAL),
    "30": (CANONICAL_DAYS, CANONICAL_INTERVAL),
    "90": (CANONICAL_DAYS, CANONICAL_INTERVAL),
    "365": (CANONICAL_DAYS, CANONICAL_INTERVAL),
    MAX_DAYS: (MAX_DAYS, CANONICAL_INTERVAL),
}

SUPPORTED_DAYS = tuple(CANONICAL_HISTORY.keys())

# Distinct canonical fetches, in prewarm order
CANONICAL_SERIES = tuple(dict.fromkeys(CANONICAL_HISTORY.values()))


def is_supported_days(days: Optional[str]) -> bool:
    return (days or "").strip().lower() in CANONICAL_HISTORY


def canonicalize_history_request(days: str, interval: Optional[str] = None) -> Tuple[str, str]:
    """
    Map a requested range onto its canonical fetch.

    The requested interval never changes the canonical fetch; it only
    labels the response.

    Returns:
        (canonical_days, canonical_interval)

    Raises:
        NotAvailableError: If `days` is empty or not a supported range
    """
    days = (days or "").strip().lower()
    if not days:
        raise NotAvailableError("days cannot be empty")

    try:
        return CANONICAL_HISTORY[days]
    except KeyError:
        raise NotAvailableError(
            f"unsupported days value: {days} (must be one of: {', '.join(SUPPORTED_DAYS)})"
        ) from None


def slice_history(history: HistoryResponse, days: str, interval: Optional[str] = None) -> HistoryResponse:
    """
    Derive a shorter range from a cached canonical series.

    Args:
        history: Canonical series (ascending timestamps)
        days: Requested range in days
        interval: Requested interval label (defaults to the series' own)

    Returns:
        A new HistoryResponse whose days/interval are the requested values;
        the input is never modified
    """
    label = interval or history.interval

    try:
        days_int = int(days)
    except (TypeError, ValueError):
        days_int = 0

    if days_int <= 0 or not history.prices:
        return history.model_copy(update={"days": days, "interval": label, "prices": list(history.prices)}, deep=True)

    cutoff = history.prices[-1].timestamp - days_int * DAY_MS
    filtered = [point for point in history.prices if point.timestamp >= cutoff]

    return history.model_copy(update={"days": days, "interval": label, "prices": filtered}, deep=True)


def finalize_history(history: HistoryResponse, days: str, canonical_days: str, interval: Optional[str]) -> HistoryResponse:
    """Return the client's view of a canonical series: sliced, or a whole copy."""
    days = days.strip().lower()
    if days != canonical_days:
        return slice_history(history, days, interval)
    return history.model_copy(deep=True)
