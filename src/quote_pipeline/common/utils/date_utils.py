"""
Date Utilities
==============

UTC handling and interval bucketing for observation, VWAP and candle windows.
"""

from datetime import UTC, datetime, timedelta

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def utc_now() -> datetime:
    """
    Get current time in UTC.

    Returns:
        Current UTC datetime
    """
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def interval_to_seconds(interval: str) -> int:
    """
    Convert an interval label to seconds.

    Examples:
        '5s' -> 5
        '15m' -> 900
        '4h' -> 14400
        '1d' -> 86400

    Raises:
        ValueError: On unknown unit or non-positive value
    """
    if not interval or len(interval) < 2:
        raise ValueError(f"Unsupported interval: {interval!r}")

    unit = interval[-1]
    if unit not in _UNIT_SECONDS:
        raise ValueError(f"Unsupported interval: {interval!r}")

    try:
        value = int(interval[:-1])
    except ValueError as e:
        raise ValueError(f"Unsupported interval: {interval!r}") from e

    if value <= 0:
        raise ValueError(f"Interval must be positive: {interval!r}")
    return value * _UNIT_SECONDS[unit]


def interval_to_timedelta(interval: str) -> timedelta:
    return timedelta(seconds=interval_to_seconds(interval))


def align_to_interval(dt: datetime, interval: str) -> datetime:
    """
    Floor a datetime to the start of its interval bucket (epoch aligned).

    Args:
        dt: Datetime to align
        interval: Interval label ('1m', '5m', '1h', ...)

    Returns:
        Bucket start in UTC
    """
    dt = ensure_utc(dt)
    seconds = interval_to_seconds(interval)
    epoch = int(dt.timestamp())
    return datetime.fromtimestamp(epoch - epoch % seconds, tz=UTC)


def last_closed_bucket(now: datetime, interval: str) -> tuple[datetime, datetime]:
    """
    Return [start, end) of the most recent bucket that ended at or before `now`.
    """
    end = align_to_interval(now, interval)
    return end - interval_to_timedelta(interval), end


def closed_buckets(
    since: datetime | None, now: datetime, interval: str
) -> list[datetime]:
    """
    Start times of every bucket that opened at or after `since` and has
    closed by `now`, oldest first.

    With no `since`, only the most recent closed bucket is returned. Returns
    an empty list when nothing new has closed.
    """
    last_start, end = last_closed_bucket(now, interval)
    if since is None:
        return [last_start]

    step = interval_to_timedelta(interval)
    start = align_to_interval(since, interval)
    if start < ensure_utc(since):
        start += step

    buckets = []
    while start < end:
        buckets.append(start)
        start += step
    return buckets
