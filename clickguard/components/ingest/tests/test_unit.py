"""
Ingest component unit tests.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from clickguard.adapters.memory_db import InMemoryEventRepo, InMemorySessionRepo
from clickguard.components.ingest import (
    IngestEventInput,
    IngestionPipeline,
    build_ingestion_pipeline,
    create_ingestion_pipeline,
    extract_client_ip,
    extract_utm_params,
    parse_referrer,
    parse_user_agent,
    record_event,
    run_ingest,
    validate_payload,
)
from clickguard.components.ratelimit import InMemoryRateLimitRepo
from clickguard.core.entities import Event
from clickguard.core.request import OriginHints, RequestContext
from clickguard.rules.models import RateLimitWindow, Rules

NOW = datetime(2026, 3, 4, 15, 30, tzinfo=UTC)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def now_utc(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def events() -> InMemoryEventRepo:
    return InMemoryEventRepo()


@pytest.fixture
def sessions() -> InMemorySessionRepo:
    return InMemorySessionRepo()


@pytest.fixture
def pipeline(clock: FixedClock, events: InMemoryEventRepo) -> IngestionPipeline:
    return build_ingestion_pipeline(
        Rules(),
        rate_limit_repo=InMemoryRateLimitRepo(),
        history=events,
        time_port=clock,
    )


def payload(**overrides: object) -> dict[str, object]:
    data: dict[str, object] = {
        "project_id": "proj-1",
        "session_id": "sess-1",
        "event_type": "pageview",
        "user_agent": IPHONE_UA,
        "screen_width": 390,
        "screen_height": 844,
        "time_on_page": 12.5,
        "page_load_time": 850,
    }
    data.update(overrides)
    return data


class TestValidation:
    def test_requires_identifiers(self) -> None:
        _, errors = validate_payload({"event_type": "pageview"})

        assert {e.field_name for e in errors} == {"project_id", "session_id"}
        assert all(e.code == "required" for e in errors)

    def test_rejects_unknown_event_type(self) -> None:
        _, errors = validate_payload(payload(event_type="purchase"))

        assert [e.code for e in errors] == ["invalid_event_type"]

    def test_rejects_non_numeric_metrics(self) -> None:
        _, errors = validate_payload(payload(screen_width="wide"))

        assert errors[0].field_name == "screen_width"

    def test_coerces_numeric_strings(self) -> None:
        numbers, errors = validate_payload(payload(scroll_depth="75", clicks_count=""))

        assert errors == []
        assert numbers["scroll_depth"] == 75.0
        assert numbers["clicks_count"] is None

    def test_rejects_non_string_text_fields(self) -> None:
        _, errors = validate_payload(
            payload(user_agent=12345, ip_address=["203.0.113.9"], utm_source=7)
        )

        assert {e.field_name for e in errors} == {"user_agent", "ip_address", "utm_source"}
        assert all(e.code == "invalid_type" for e in errors)

    def test_numeric_user_agent_is_rejected_not_raised(
        self, pipeline: IngestionPipeline
    ) -> None:
        out = pipeline.ingest({"project_id": "p", "session_id": "s", "user_agent": 12345})

        assert out.success is False
        assert out.errors[0].code == "invalid_type"
        assert out.errors[0].field_name == "user_agent"

    def test_invalid_payload_yields_no_event(self, pipeline: IngestionPipeline) -> None:
        out = pipeline.ingest({"project_id": "proj-1"})

        assert out.success is False
        assert out.event is None


class TestPipeline:
    def test_enriches_event(self, pipeline: IngestionPipeline) -> None:
        context = RequestContext(
            hints=OriginHints(country="de", city="Berlin", asn=3320),
            headers={"cf-connecting-ip": "203.0.113.9"},
        )
        data = payload(
            referrer="https://www.google.com/search?q=Running+Shoes",
            clicked_url="https://shop.example/landing?utm_source=Newsletter&utm_medium=CPC",
        )

        out = pipeline.ingest(data, context, remote_addr="10.0.0.1")

        assert out.success is True
        event = out.event
        assert event is not None
        assert event.ip_address == "203.0.113.9"
        assert event.timestamp == NOW
        assert event.device_type == "mobile"
        assert event.os_name == "iOS"
        assert event.referrer_type == "search"
        assert event.search_engine == "google"
        assert event.search_keyword == "running shoes"
        assert event.utm_source == "newsletter"
        assert event.utm_medium == "cpc"
        assert event.country_code == "DE"
        assert event.city == "Berlin"
        assert out.geo_source == "hints"

    def test_scores_are_attached(self, pipeline: IngestionPipeline) -> None:
        out = pipeline.ingest(payload(), remote_addr="198.51.100.7")

        assert out.event is not None
        assert out.fraud is not None
        assert out.bot is not None
        assert out.event.fraud_score == out.fraud.score
        assert out.event.threat_level == out.fraud.threat_level
        assert out.event.is_bot == out.bot.is_bot
        assert out.event.bot_confidence == out.bot.confidence

    def test_missing_geo_is_unknown_country(self, pipeline: IngestionPipeline) -> None:
        out = pipeline.ingest(payload(), remote_addr="198.51.100.7")

        assert out.event is not None
        assert out.event.country_code == "XX"
        assert out.geo_source == "unknown"

    def test_rate_limited_event_is_still_scored(
        self, clock: FixedClock, events: InMemoryEventRepo
    ) -> None:
        rules = Rules()
        rules.rate_limits.session = RateLimitWindow(max_requests=2, window_seconds=60)
        pipeline = build_ingestion_pipeline(
            rules,
            rate_limit_repo=InMemoryRateLimitRepo(),
            history=events,
            time_port=clock,
        )

        outs = [pipeline.ingest(payload(), remote_addr="198.51.100.7") for _ in range(3)]

        assert [o.rate_limited for o in outs] == [False, False, True]
        assert outs[2].exceeded_scopes() == ["session"]
        assert outs[2].event is not None
        assert outs[2].event.rate_limited is True
        assert outs[2].fraud is not None

    def test_no_ip_skips_ip_scope(self, pipeline: IngestionPipeline) -> None:
        out = pipeline.ingest(payload())

        assert [d.scope for d in out.rate_limits] == ["session", "project"]

    def test_factory_defaults_score_without_a_database(self, clock: FixedClock) -> None:
        out = create_ingestion_pipeline(time_port=clock).ingest(
            payload(), remote_addr="198.51.100.7"
        )

        assert out.success is True
        assert out.fraud is not None
        assert out.fraud.components.velocity == 0

    def test_factory_history_feeds_velocity(
        self, clock: FixedClock, events: InMemoryEventRepo
    ) -> None:
        for i in range(60):
            events.insert(
                Event(
                    project_id="proj-1",
                    session_id=f"s-{i}",
                    ip_address="198.51.100.7",
                    timestamp=NOW - timedelta(seconds=i),
                )
            )
        pipeline = create_ingestion_pipeline(time_port=clock, history=events)

        out = pipeline.ingest(payload(), remote_addr="198.51.100.7")

        assert out.fraud is not None
        assert out.fraud.components.velocity >= 50


class TestRecordEvent:
    def test_creates_and_updates_session(
        self, events: InMemoryEventRepo, sessions: InMemorySessionRepo
    ) -> None:
        first = Event(project_id="p", session_id="s", ip_address="198.51.100.7", timestamp=NOW)
        second = Event(
            project_id="p",
            session_id="s",
            ip_address="198.51.100.7",
            timestamp=NOW + timedelta(seconds=40),
            event_type="click",
        )

        assert record_event(first, events=events, sessions=sessions) is True
        assert record_event(second, events=events, sessions=sessions) is True

        session = sessions.get("s")
        assert session is not None
        assert session.events_count == 2
        assert session.page_views == 1
        assert session.duration_seconds == 40
        assert session.is_returning is False
        assert events.count() == 2

    def test_returning_visitor(
        self, events: InMemoryEventRepo, sessions: InMemorySessionRepo
    ) -> None:
        earlier = Event(
            project_id="p",
            session_id="s-old",
            ip_address="198.51.100.7",
            timestamp=NOW - timedelta(days=2),
        )
        later = Event(project_id="p", session_id="s-new", ip_address="198.51.100.7", timestamp=NOW)

        record_event(earlier, events=events, sessions=sessions)
        record_event(later, events=events, sessions=sessions)

        session = sessions.get("s-new")
        assert session is not None
        assert session.is_returning is True

    def test_store_failure_is_reported_not_raised(self) -> None:
        class BrokenWriter:
            def insert(self, event: Event) -> Event:
                raise RuntimeError("disk full")

        event = Event(project_id="p", session_id="s", timestamp=NOW)

        assert record_event(event, events=BrokenWriter()) is False

    def test_run_ingest_persists(
        self,
        pipeline: IngestionPipeline,
        events: InMemoryEventRepo,
        sessions: InMemorySessionRepo,
    ) -> None:
        out = run_ingest(
            IngestEventInput(payload=payload(), remote_addr="198.51.100.7"),
            pipeline=pipeline,
            events=events,
            sessions=sessions,
        )

        assert out.success is True
        assert events.count() == 1
        assert sessions.get("sess-1") is not None


class TestParsing:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            (None, "direct"),
            ("https://www.bing.com/search?q=shoes", "search"),
            ("https://t.co/abc", "social"),
            ("https://m.facebook.com/", "social"),
            ("https://mail.google.com/mail/u/0", "email"),
            ("https://www.microsoft.com/", "referral"),
            ("https://blog.example.org/post", "referral"),
        ],
    )
    def test_referrer_types(self, url: str | None, expected: str) -> None:
        assert parse_referrer(url).referrer_type == expected

    def test_email_medium_wins(self) -> None:
        assert parse_referrer("https://news.example/", "Email").referrer_type == "email"

    def test_client_ip_precedence(self) -> None:
        headers = {"X-Forwarded-For": "203.0.113.1, 10.0.0.2", "CF-Connecting-IP": "203.0.113.7"}

        assert extract_client_ip(headers, "10.0.0.3") == "203.0.113.7"
        assert extract_client_ip({"x-forwarded-for": "203.0.113.1, 10.0.0.2"}) == "203.0.113.1"
        assert extract_client_ip({}, "10.0.0.3") == "10.0.0.3"

    def test_utm_payload_overrides_url(self) -> None:
        utm = extract_utm_params(
            {"utm_source": " Partner "},
            "https://x.example/?utm_source=ignored&utm_campaign=Spring",
        )

        assert utm["utm_source"] == "partner"
        assert utm["utm_campaign"] == "spring"
        assert utm["utm_term"] is None

    def test_user_agent_classes(self) -> None:
        tablet = parse_user_agent("Mozilla/5.0 (iPad; CPU OS 17_4 like Mac OS X)")
        desktop = parse_user_agent(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/124.0 Safari/537.36 Edg/124.0"
        )

        assert tablet.device_type == "tablet"
        assert desktop.device_type == "desktop"
        assert desktop.browser_name == "Edge"
        assert desktop.os_name == "Windows"
