"""
Domain entities for clickguard.

- Event: one observed visit/click, enriched and scored (immutable once written)
- SessionRecord: rolling per-session summary maintained by ingestion
- FraudReputation: one running record per IP address
- RateLimitViolation: a request that was refused by the rate limiter
- AggregationBucket: one row per (project, granularity, bucket_start)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "AggregationBucket",
    "DeviceType",
    "Event",
    "EventType",
    "FraudReputation",
    "GranularityName",
    "RateLimitViolation",
    "ReferrerType",
    "SessionRecord",
    "ThreatLevel",
    "TopItem",
    "utc_now",
]

# --- Enums / Literals ---
EventType = Literal["pageview", "click", "conversion", "custom"]
DeviceType = Literal["mobile", "tablet", "desktop", "other"]
ReferrerType = Literal["direct", "search", "social", "email", "referral"]
ThreatLevel = Literal["minimal", "low", "medium", "high", "critical"]
GranularityName = Literal["hourly", "daily", "weekly", "monthly"]


def utc_now() -> datetime:
    return datetime.now(UTC)


# --- Events ---


class Event(BaseModel):
    """
    One observed visit/click.

    Invariants:
    - Immutable once written; only retention pruning deletes it
    - country_code is "XX" when geo enrichment missed
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    project_id: str
    session_id: str
    ip_address: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: EventType = "pageview"

    # Client classification
    user_agent: str | None = None
    device_type: DeviceType = "desktop"
    browser_name: str | None = None
    os_name: str | None = None
    screen_width: int | None = None
    screen_height: int | None = None
    viewport_width: int | None = None
    viewport_height: int | None = None

    # Attribution
    referrer_url: str | None = None
    referrer_domain: str | None = None
    referrer_type: ReferrerType = "direct"
    search_engine: str | None = None
    search_keyword: str | None = None
    clicked_url: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None

    # Geo
    country_code: str = "XX"
    country_name: str | None = None
    region_code: str | None = None
    city: str | None = None
    timezone: str | None = None
    isp: str | None = None
    as_number: int | None = None

    # Engagement / performance
    time_on_page: float | None = None
    scroll_depth: float | None = None
    clicks_count: int | None = None
    page_load_time: float | None = None
    dom_interactive_time: float | None = None
    response_time: float | None = None
    conversion_value: float | None = None
    custom_params: dict[str, Any] = Field(default_factory=dict)

    # Scoring
    fraud_score: int = 0
    threat_level: ThreatLevel = "minimal"
    is_bot: bool = False
    is_crawler: bool = False
    bot_confidence: int = 0
    rate_limited: bool = False


class SessionRecord(BaseModel):
    """Per-session summary, created on the first event of a session."""

    session_id: str
    project_id: str
    ip_address: str | None = None
    start_time: datetime
    end_time: datetime
    page_views: int = 0
    events_count: int = 0
    entry_referrer_type: ReferrerType = "direct"
    is_returning: bool = False

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.end_time - self.start_time).total_seconds())


# --- Fraud ---


class FraudReputation(BaseModel):
    """
    Running reputation record for one IP address.

    Invariants:
    - total_events grows by exactly 1 per scoring call
    - Provider flags are merged (OR), never cleared by an update
    """

    ip_address: str
    base_score: int = 30
    vpn_detected: bool = False
    proxy_detected: bool = False
    tor_detected: bool = False
    hosting_provider: bool = False
    total_events: int = 0
    suspicious_events: int = 0
    blocked_events: int = 0
    last_updated: datetime = Field(default_factory=utc_now)


class RateLimitViolation(BaseModel):
    """A request refused because its scope was over the limit."""

    scope: str
    identifier: str
    request_count: int
    limit: int
    window_seconds: int
    occurred_at: datetime = Field(default_factory=utc_now)


# --- Aggregation ---


class TopItem(BaseModel):
    """One entry of a ranked top-N breakdown."""

    value: str
    count: int


class DaySummary(BaseModel):
    """One day's headline counts inside a weekly or monthly bucket."""

    date: str
    total_events: int
    unique_visitors: int
    conversions: int


class AggregationBucket(BaseModel):
    """
    Aggregated summary of one project's events over one time span.

    Invariants:
    - Exactly one row per (project_id, granularity, bucket_start)
    - Hourly rows are computed from raw events, coarser rows from finer rows only
    """

    project_id: str
    granularity: GranularityName
    bucket_start: datetime
    bucket_end: datetime

    # Volume
    total_events: int = 0
    unique_visitors: int = 0
    unique_sessions: int = 0
    page_views: int = 0
    clicks: int = 0

    # Devices
    mobile_events: int = 0
    desktop_events: int = 0
    tablet_events: int = 0
    other_device_events: int = 0

    # Geography
    unique_countries: int = 0
    unique_cities: int = 0
    top_countries: list[TopItem] = Field(default_factory=list)
    top_cities: list[TopItem] = Field(default_factory=list)

    # Traffic sources
    direct_traffic: int = 0
    search_traffic: int = 0
    social_traffic: int = 0
    referral_traffic: int = 0
    email_traffic: int = 0
    top_referrers: list[TopItem] = Field(default_factory=list)
    top_utm_sources: list[TopItem] = Field(default_factory=list)
    top_utm_mediums: list[TopItem] = Field(default_factory=list)
    top_utm_campaigns: list[TopItem] = Field(default_factory=list)
    top_search_keywords: list[TopItem] = Field(default_factory=list)

    # Sessions
    sessions_count: int = 0
    new_sessions: int = 0
    returning_sessions: int = 0
    avg_session_duration: float = 0.0
    avg_pages_per_session: float = 0.0
    bounce_rate: float = 0.0

    # Integrity
    bot_events: int = 0
    suspicious_events: int = 0
    blocked_events: int = 0
    avg_fraud_score: float = 0.0

    # Performance
    avg_response_time: float | None = None
    avg_page_load_time: float | None = None
    # Events that carried the value; weights for roll-up
    response_time_samples: int = 0
    page_load_time_samples: int = 0

    # Conversions
    conversions: int = 0
    revenue: float = 0.0
    conversion_rate: float = 0.0

    # Granularity specific
    hourly_distribution: list[int] = Field(default_factory=list)
    growth_rate: float | None = None
    top_days: list[DaySummary] = Field(default_factory=list)
    daily_average_events: float | None = None
    daily_average_visitors: float | None = None

    computed_at: datetime = Field(default_factory=utc_now)
