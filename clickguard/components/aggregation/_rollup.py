"""
Pure bucket computation.

- Hourly buckets from raw events and session summaries
- Coarser buckets from finer buckets only (never from raw events)
- Top-N ranking: count descending, then value ascending
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime

from clickguard.core.entities import (
    AggregationBucket,
    DaySummary,
    Event,
    SessionRecord,
    TopItem,
)
from clickguard.core.timewindows import Granularity, ensure_utc

SUM_FIELDS: tuple[str, ...] = (
    "total_events",
    "unique_visitors",
    "unique_sessions",
    "page_views",
    "clicks",
    "mobile_events",
    "desktop_events",
    "tablet_events",
    "other_device_events",
    "direct_traffic",
    "search_traffic",
    "social_traffic",
    "referral_traffic",
    "email_traffic",
    "sessions_count",
    "new_sessions",
    "returning_sessions",
    "bot_events",
    "suspicious_events",
    "blocked_events",
    "conversions",
)

TOP_FIELDS: tuple[str, ...] = (
    "top_countries",
    "top_cities",
    "top_referrers",
    "top_utm_sources",
    "top_utm_mediums",
    "top_utm_campaigns",
    "top_search_keywords",
)

# Event attribute feeding each top-N list
TOP_SOURCES: dict[str, str] = {
    "top_countries": "country_code",
    "top_cities": "city",
    "top_referrers": "referrer_domain",
    "top_utm_sources": "utm_source",
    "top_utm_mediums": "utm_medium",
    "top_utm_campaigns": "utm_campaign",
    "top_search_keywords": "search_keyword",
}

KNOWN_DEVICES = ("mobile", "desktop", "tablet")

TOP_DAYS = 7


# --- Top-N ---


def rank_top(counts: Counter[str], n: int) -> list[TopItem]:
    """Rank counts into at most n items, ties broken by value."""
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [TopItem(value=value, count=count) for value, count in ranked[:n]]


def top_from_values(values: Iterable[str | None], n: int) -> list[TopItem]:
    return rank_top(Counter(v for v in values if v), n)


def merge_top(lists: Iterable[Sequence[TopItem]], n: int) -> list[TopItem]:
    """Merge child top-N lists by summing counts, then re-rank."""
    counts: Counter[str] = Counter()
    for items in lists:
        for item in items:
            counts[item.value] += item.count
    return rank_top(counts, n)


# --- Averages ---


def mean(values: Iterable[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def weighted_mean(pairs: Iterable[tuple[float | None, int]]) -> float | None:
    """Mean of (value, weight) pairs, skipping missing values and zero weights."""
    total = 0.0
    weight = 0
    for value, w in pairs:
        if value is None or w <= 0:
            continue
        total += value * w
        weight += w
    if weight == 0:
        return None
    return total / weight


def round2(value: float | None) -> float | None:
    return None if value is None else round(value, 2)


def conversion_rate(conversions: int, unique_visitors: int) -> float:
    """Conversions per unique visitor, as a percentage."""
    if unique_visitors <= 0:
        return 0.0
    return round(conversions / unique_visitors * 100, 2)


def growth_rate(current: int, previous: int) -> float:
    """Percentage change; 0 when there is no previous volume."""
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 2)


# --- Hourly ---


def visitor_key(event: Event) -> str:
    return event.ip_address or f"session:{event.session_id}"


def session_stats(sessions: Sequence[SessionRecord]) -> dict[str, float | int]:
    count = len(sessions)
    if count == 0:
        return {
            "sessions_count": 0,
            "new_sessions": 0,
            "returning_sessions": 0,
            "avg_session_duration": 0.0,
            "avg_pages_per_session": 0.0,
            "bounce_rate": 0.0,
        }
    returning = sum(1 for s in sessions if s.is_returning)
    bounces = sum(1 for s in sessions if s.page_views == 1)
    return {
        "sessions_count": count,
        "new_sessions": count - returning,
        "returning_sessions": returning,
        "avg_session_duration": round(sum(s.duration_seconds for s in sessions) / count, 2),
        "avg_pages_per_session": round(sum(s.page_views for s in sessions) / count, 2),
        "bounce_rate": round(bounces / count * 100, 2),
    }


def compute_hourly_bucket(
    project_id: str,
    start: datetime,
    end: datetime,
    events: Sequence[Event],
    sessions: Sequence[SessionRecord],
    *,
    top_n: int,
    suspicious_score: int,
    blocked_score: int,
    computed_at: datetime,
) -> AggregationBucket:
    """Summarise one project's raw events for one hour."""
    device = Counter(e.device_type for e in events)
    traffic = Counter(e.referrer_type for e in events)
    scores = [e.fraud_score for e in events]
    conversions = [e for e in events if e.event_type == "conversion"]
    unique_visitors = len({visitor_key(e) for e in events})

    tops = {
        name: top_from_values((getattr(e, attr) for e in events), top_n)
        for name, attr in TOP_SOURCES.items()
    }

    return AggregationBucket(
        project_id=project_id,
        granularity=Granularity.HOURLY.value,
        bucket_start=ensure_utc(start),
        bucket_end=ensure_utc(end),
        total_events=len(events),
        unique_visitors=unique_visitors,
        unique_sessions=len({e.session_id for e in events}),
        page_views=sum(1 for e in events if e.event_type == "pageview"),
        clicks=sum(1 for e in events if e.event_type == "click"),
        mobile_events=device["mobile"],
        desktop_events=device["desktop"],
        tablet_events=device["tablet"],
        other_device_events=sum(c for d, c in device.items() if d not in KNOWN_DEVICES),
        unique_countries=len({e.country_code for e in events if e.country_code}),
        unique_cities=len({e.city for e in events if e.city}),
        direct_traffic=traffic["direct"],
        search_traffic=traffic["search"],
        social_traffic=traffic["social"],
        referral_traffic=traffic["referral"],
        email_traffic=traffic["email"],
        bot_events=sum(1 for e in events if e.is_bot),
        suspicious_events=sum(1 for s in scores if s >= suspicious_score),
        blocked_events=sum(1 for s in scores if s >= blocked_score),
        avg_fraud_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
        avg_response_time=round2(mean(e.response_time for e in events)),
        avg_page_load_time=round2(mean(e.page_load_time for e in events)),
        response_time_samples=sum(1 for e in events if e.response_time is not None),
        page_load_time_samples=sum(1 for e in events if e.page_load_time is not None),
        conversions=len(conversions),
        revenue=round(sum(e.conversion_value or 0.0 for e in conversions), 2),
        conversion_rate=conversion_rate(len(conversions), unique_visitors),
        computed_at=computed_at,
        **session_stats(sessions),
        **tops,
    )


# --- Roll-up ---


def rollup_buckets(
    project_id: str,
    granularity: Granularity,
    start: datetime,
    end: datetime,
    children: Sequence[AggregationBucket],
    *,
    top_n: int,
    computed_at: datetime,
) -> AggregationBucket:
    """
    Combine finer buckets into one coarser bucket.

    Counts are summed; averages are weighted by the population they were
    taken over; top-N lists are merged and re-ranked.
    """
    sums = {name: sum(getattr(c, name) for c in children) for name in SUM_FIELDS}
    tops = {name: merge_top((getattr(c, name) for c in children), top_n) for name in TOP_FIELDS}

    by_events = [c.total_events for c in children]
    by_sessions = [c.sessions_count for c in children]

    def events_weighted(attr: str) -> float | None:
        return weighted_mean(zip((getattr(c, attr) for c in children), by_events, strict=True))

    def samples_weighted(attr: str, samples: str) -> float | None:
        return weighted_mean((getattr(c, attr), getattr(c, samples)) for c in children)

    def sessions_weighted(attr: str) -> float:
        value = weighted_mean(zip((getattr(c, attr) for c in children), by_sessions, strict=True))
        return round(value, 2) if value is not None else 0.0

    unique_countries = max(
        max((c.unique_countries for c in children), default=0),
        len(tops["top_countries"]),
    )
    unique_cities = max(
        max((c.unique_cities for c in children), default=0),
        len(tops["top_cities"]),
    )

    return AggregationBucket(
        project_id=project_id,
        granularity=granularity.value,
        bucket_start=ensure_utc(start),
        bucket_end=ensure_utc(end),
        unique_countries=unique_countries,
        unique_cities=unique_cities,
        avg_session_duration=sessions_weighted("avg_session_duration"),
        avg_pages_per_session=sessions_weighted("avg_pages_per_session"),
        bounce_rate=sessions_weighted("bounce_rate"),
        avg_fraud_score=round2(events_weighted("avg_fraud_score")) or 0.0,
        avg_response_time=round2(samples_weighted("avg_response_time", "response_time_samples")),
        avg_page_load_time=round2(
            samples_weighted("avg_page_load_time", "page_load_time_samples")
        ),
        response_time_samples=sum(c.response_time_samples for c in children),
        page_load_time_samples=sum(c.page_load_time_samples for c in children),
        revenue=round(sum(c.revenue for c in children), 2),
        conversion_rate=conversion_rate(sums["conversions"], sums["unique_visitors"]),
        computed_at=computed_at,
        **sums,
        **tops,
    )


def daily_extras(dailies: Sequence[AggregationBucket], n: int = TOP_DAYS) -> dict[str, object]:
    """
    Busiest days and per-day averages from the daily buckets of a span.

    Averages are taken over the days that have a bucket; days without
    traffic have none.
    """
    ranked = sorted(dailies, key=lambda b: (-b.total_events, ensure_utc(b.bucket_start)))
    top_days = [
        DaySummary(
            date=ensure_utc(b.bucket_start).date().isoformat(),
            total_events=b.total_events,
            unique_visitors=b.unique_visitors,
            conversions=b.conversions,
        )
        for b in ranked[:n]
    ]
    return {
        "top_days": top_days,
        "daily_average_events": round2(mean(b.total_events for b in dailies)),
        "daily_average_visitors": round2(mean(b.unique_visitors for b in dailies)),
    }


def hourly_distribution(day_start: datetime, hourly: Sequence[AggregationBucket]) -> list[int]:
    """Events per hour of day (24 slots) from a day's hourly buckets."""
    day_start = ensure_utc(day_start)
    slots = [0] * 24
    for bucket in hourly:
        offset = int((ensure_utc(bucket.bucket_start) - day_start).total_seconds() // 3600)
        if 0 <= offset < 24:
            slots[offset] += bucket.total_events
    return slots
