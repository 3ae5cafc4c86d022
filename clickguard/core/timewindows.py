"""
Time window arithmetic shared by rate limiting, velocity scoring and rollups.

Everything here is pure: callers pass `now` explicitly.

Invariants:
- All results are timezone-aware UTC
- Lookback windows are closed intervals [now - window, now]
- Buckets are half-open intervals [start, end)
- Weekly buckets start on Sunday 00:00 UTC
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from enum import Enum


class Granularity(str, Enum):
    """Bucket granularity."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def ensure_utc(timestamp: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are assumed UTC)."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC)


# --- Lookback windows ---


def window_start(now: datetime, window_seconds: int) -> datetime:
    """Earliest timestamp still inside a lookback window ending at `now`."""
    return ensure_utc(now) - timedelta(seconds=window_seconds)


def max_events_in_span(timestamps: Iterable[datetime], span_seconds: int) -> int:
    """Largest number of timestamps falling inside any span of span_seconds."""
    ordered = sorted(ensure_utc(ts) for ts in timestamps)
    span = timedelta(seconds=span_seconds)
    best = 0
    left = 0
    for right, ts in enumerate(ordered):
        while ts - ordered[left] > span:
            left += 1
        best = max(best, right - left + 1)
    return best


# --- Buckets ---


def bucket_start(granularity: Granularity | str, timestamp: datetime) -> datetime:
    """
    Start of the bucket containing `timestamp`.

    Raises ValueError for an unknown granularity.
    """
    g = Granularity(granularity)
    ts = ensure_utc(timestamp)

    if g == Granularity.HOURLY:
        return ts.replace(minute=0, second=0, microsecond=0)

    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if g == Granularity.DAILY:
        return day
    if g == Granularity.WEEKLY:
        # weekday(): Monday=0 .. Sunday=6
        return day - timedelta(days=(day.weekday() + 1) % 7)
    return day.replace(day=1)


def bucket_end(granularity: Granularity | str, start: datetime) -> datetime:
    """End of a bucket (exclusive)."""
    g = Granularity(granularity)
    start = ensure_utc(start)

    if g == Granularity.HOURLY:
        return start + timedelta(hours=1)
    if g == Granularity.DAILY:
        return start + timedelta(days=1)
    if g == Granularity.WEEKLY:
        return start + timedelta(days=7)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def bucket_bounds(
    granularity: Granularity | str,
    timestamp: datetime,
) -> tuple[datetime, datetime]:
    """(start, end) of the bucket containing `timestamp`."""
    start = bucket_start(granularity, timestamp)
    return start, bucket_end(granularity, start)


def previous_bucket_bounds(
    granularity: Granularity | str,
    now: datetime,
) -> tuple[datetime, datetime]:
    """
    Bounds of the last complete bucket before `now`.

    This is what a scheduled trigger firing at `now` aggregates.
    """
    current = bucket_start(granularity, now)
    return bucket_bounds(granularity, current - timedelta(microseconds=1))


def source_granularity(granularity: Granularity | str) -> Granularity | None:
    """Granularity a bucket is rolled up from; None means raw events."""
    g = Granularity(granularity)
    if g == Granularity.HOURLY:
        return None
    if g == Granularity.DAILY:
        return Granularity.HOURLY
    return Granularity.DAILY
