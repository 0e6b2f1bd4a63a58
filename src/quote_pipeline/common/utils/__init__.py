"""Common utilities."""

from .async_utils import run_with_timeout
from .date_utils import (
    align_to_interval,
    closed_buckets,
    ensure_utc,
    interval_to_seconds,
    interval_to_timedelta,
    last_closed_bucket,
    utc_now,
)

__all__ = [
    "align_to_interval",
    "closed_buckets",
    "ensure_utc",
    "interval_to_seconds",
    "interval_to_timedelta",
    "last_closed_bucket",
    "run_with_timeout",
    "utc_now",
]
