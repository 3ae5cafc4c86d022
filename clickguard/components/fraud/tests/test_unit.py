"""
Fraud component unit tests.

Covers component rules, composite arithmetic, thresholds and the
reputation side effect.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from clickguard.adapters.memory_db import InMemoryEventRepo
from clickguard.components.fraud import (
    ComponentScores,
    FraudConfig,
    FraudScorer,
    InMemoryReputationRepo,
    ReputationUpdate,
    ScoreEventInput,
    ScoreRule,
    WeightTable,
    build_fraud_config,
    build_rule_set,
    classify_threat_level,
    composite_score,
    recommend_action,
    round_half_up,
    run_score,
)
from clickguard.core.entities import Event, FraudReputation
from clickguard.core.request import OriginHints, RequestContext
from clickguard.rules.models import FraudRules

NOW = datetime(2026, 5, 4, 15, 30, tzinfo=UTC)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
HEADLESS_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) HeadlessChrome/124.0 Safari/537.36"
)


def make_event(**overrides: object) -> Event:
    data: dict[str, object] = {
        "project_id": "proj-1",
        "session_id": "sess-1",
        "ip_address": "203.0.113.9",
        "timestamp": NOW,
        "user_agent": DESKTOP_UA,
        "screen_width": 1920,
        "screen_height": 1080,
        "viewport_width": 1600,
        "viewport_height": 900,
        "page_load_time": 820.0,
        "dom_interactive_time": 410.0,
        "time_on_page": 12.0,
        "country_code": "US",
    }
    data.update(overrides)
    return Event.model_validate(data)


class BrokenHistory:
    def list_session_events(self, session_id, since=None, limit=None):  # type: ignore[no-untyped-def]
        raise RuntimeError("history unavailable")

    def count_ip_events(self, ip_address, start, end):  # type: ignore[no-untyped-def]
        raise RuntimeError("history unavailable")

    def distinct_session_values(self, session_id, column):  # type: ignore[no-untyped-def]
        raise RuntimeError("history unavailable")


class BrokenReputations:
    def get(self, ip_address: str) -> FraudReputation | None:
        raise RuntimeError("db locked")

    def upsert(self, reputation: FraudReputation) -> FraudReputation:
        raise RuntimeError("db locked")

    def record(self, update: ReputationUpdate) -> FraudReputation:
        raise RuntimeError("db locked")


@pytest.fixture
def history() -> InMemoryEventRepo:
    return InMemoryEventRepo()


@pytest.fixture
def reputations() -> InMemoryReputationRepo:
    return InMemoryReputationRepo()


@pytest.fixture
def scorer(
    reputations: InMemoryReputationRepo, history: InMemoryEventRepo
) -> FraudScorer:
    return FraudScorer(reputations=reputations, history=history)


class TestScenarios:
    """End-to-end scoring scenarios."""

    def test_tor_exit_with_headless_browser(
        self,
        scorer: FraudScorer,
        reputations: InMemoryReputationRepo,
    ) -> None:
        """Known Tor IP plus headless UA lands at medium or above."""
        reputations.upsert(
            FraudReputation(ip_address="203.0.113.9", base_score=30, tor_detected=True)
        )
        event = make_event(
            user_agent=HEADLESS_UA,
            screen_width=None,
            screen_height=None,
            viewport_width=None,
            viewport_height=None,
            page_load_time=None,
            dom_interactive_time=None,
            time_on_page=0,
            utm_source="bot-network",
            country_code="XX",
        )
        context = RequestContext(hints=OriginHints(threat_score=50, verified_bot=True))

        result = scorer.score(event, context)

        assert result.components.ip >= 65
        assert result.components.device >= 40
        assert result.score >= 45
        assert result.threat_level in ("medium", "high", "critical")

    def test_sixty_events_in_a_minute_maxes_velocity(
        self,
        scorer: FraudScorer,
        history: InMemoryEventRepo,
    ) -> None:
        """60 clicks from one IP inside 60 seconds."""
        for i in range(60):
            history.insert(
                make_event(session_id=f"s-{i}", timestamp=NOW - timedelta(seconds=i))
            )

        result = scorer.score(make_event(session_id="s-new"))

        assert result.components.velocity >= 50

    def test_clean_event_is_minimal(self, scorer: FraudScorer) -> None:
        """A normal desktop visit from an unseen IP."""
        result = scorer.score(make_event())

        assert result.components.ip == 30
        assert result.components.device == 0
        assert result.components.velocity == 0
        assert result.score == round_half_up(30 * 0.25)
        assert result.threat_level == "minimal"
        assert result.action == "allow"


class TestReputation:
    """Reputation side effect."""

    def test_total_events_increments_by_one(
        self,
        scorer: FraudScorer,
        reputations: InMemoryReputationRepo,
    ) -> None:
        for expected in range(1, 6):
            scorer.score(make_event())
            rep = reputations.get("203.0.113.9")
            assert rep is not None
            assert rep.total_events == expected

    def test_merge_keeps_flags_and_counts_severity(
        self,
        reputations: InMemoryReputationRepo,
        history: InMemoryEventRepo,
    ) -> None:
        """Flags survive, suspicious/blocked counters follow the composite."""
        reputations.upsert(
            FraudReputation(ip_address="203.0.113.9", base_score=100, tor_detected=True)
        )
        always_max = {
            name: (ScoreRule("max", lambda ctx: 100),)
            for name in ("ip", "behavior", "device", "network", "pattern", "velocity")
        }
        scorer = FraudScorer(
            reputations=reputations, history=history, rule_set=always_max
        )

        result = scorer.score(make_event())
        rep = reputations.get("203.0.113.9")

        assert result.score == 100
        assert rep is not None
        assert rep.tor_detected is True
        assert rep.base_score == 100
        assert rep.suspicious_events == 1
        assert rep.blocked_events == 1

    def test_isp_flags_merged_into_reputation(
        self,
        scorer: FraudScorer,
        reputations: InMemoryReputationRepo,
    ) -> None:
        scorer.score(make_event(isp="NordVPN Services"))
        scorer.score(make_event(isp="Comcast"))

        rep = reputations.get("203.0.113.9")
        assert rep is not None
        assert rep.vpn_detected is True

    def test_concurrent_scorers_count_every_event(
        self,
        reputations: InMemoryReputationRepo,
        history: InMemoryEventRepo,
    ) -> None:
        """One scorer per request thread; every call is counted."""
        barrier = threading.Barrier(6)

        def worker() -> None:
            scorer = FraudScorer(reputations=reputations, history=history)
            barrier.wait()
            scorer.score(make_event())

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        rep = reputations.get("203.0.113.9")
        assert rep is not None
        assert rep.total_events == 6

    def test_tor_hint_scores_and_sticks(
        self,
        scorer: FraudScorer,
        reputations: InMemoryReputationRepo,
    ) -> None:
        """An edge Tor marker fires the tor rule and is kept on the IP."""
        result = scorer.score(
            make_event(), RequestContext(hints=OriginHints(tor_exit=True))
        )
        later = scorer.score(make_event())

        assert "ip.tor" in result.triggered_rules
        assert "ip.tor" in later.triggered_rules
        rep = reputations.get("203.0.113.9")
        assert rep is not None
        assert rep.tor_detected is True

    def test_record_merges_update(self, reputations: InMemoryReputationRepo) -> None:
        reputations.record(
            ReputationUpdate(
                ip_address="198.51.100.4",
                base_score=85,
                observed_at=NOW,
                suspicious=True,
                blocked=True,
                vpn=True,
            )
        )
        rep = reputations.record(
            ReputationUpdate(ip_address="198.51.100.4", base_score=20, observed_at=NOW)
        )

        assert rep.total_events == 2
        assert rep.suspicious_events == 1
        assert rep.blocked_events == 1
        assert rep.vpn_detected is True
        assert rep.base_score == 20

    def test_reputation_failure_does_not_raise(self, history: InMemoryEventRepo) -> None:
        """Store errors degrade: base score rule contributes 0."""
        scorer = FraudScorer(reputations=BrokenReputations(), history=history)

        result = scorer.score(make_event())

        assert result.components.ip == 0


class TestPartialSignals:
    def test_missing_history_contributes_zero(self) -> None:
        """History-backed rules are skipped, others still apply."""
        scorer = FraudScorer(history=BrokenHistory())

        result = scorer.score(make_event(user_agent=HEADLESS_UA))

        assert result.components.velocity == 0
        assert result.components.device == 40
        assert result.components.ip == 30

    def test_no_history_port_at_all(self) -> None:
        result = run_score(ScoreEventInput(event=make_event()))

        assert result.success is True
        assert 0 <= result.assessment.score <= 100


class TestComponentRules:
    """Individual rule behaviour."""

    def test_behavior_rapid_session_activity(
        self, scorer: FraudScorer, history: InMemoryEventRepo
    ) -> None:
        for i in range(11):
            history.insert(make_event(timestamp=NOW - timedelta(seconds=i * 2)))

        result = scorer.score(make_event())

        assert "behavior.rapid_session_activity" in result.triggered_rules

    def test_behavior_referrer_mismatch(
        self, scorer: FraudScorer, history: InMemoryEventRepo
    ) -> None:
        history.insert(
            make_event(
                timestamp=NOW - timedelta(minutes=2),
                clicked_url="https://shop.example.com/p/1",
            )
        )

        mismatch = scorer.score(make_event(referrer_url="https://elsewhere.test/"))
        match = scorer.score(make_event(referrer_url="https://shop.example.com/"))

        assert "behavior.referrer_mismatch" in mismatch.triggered_rules
        assert "behavior.referrer_mismatch" not in match.triggered_rules

    def test_behavior_instant_full_scroll(self, scorer: FraudScorer) -> None:
        result = scorer.score(make_event(scroll_depth=100, time_on_page=0.4))

        assert result.components.behavior == 20

    def test_device_impossible_mobile_width(self, scorer: FraudScorer) -> None:
        result = scorer.score(
            make_event(device_type="mobile", screen_width=2560, screen_height=1440)
        )

        assert "device.impossible_combination" in result.triggered_rules

    def test_device_viewport_larger_than_screen(self, scorer: FraudScorer) -> None:
        result = scorer.score(make_event(viewport_width=2000))

        assert result.components.device == 30

    def test_device_nonstandard_resolution(self, scorer: FraudScorer) -> None:
        result = scorer.score(
            make_event(screen_width=1921, screen_height=1081, viewport_width=800)
        )

        assert result.components.device == 10

    def test_device_short_user_agent(self, scorer: FraudScorer) -> None:
        result = scorer.score(make_event(user_agent="curl/8.0"))

        assert "device.missing_user_agent" in result.triggered_rules

    def test_ip_denylisted_range(self, scorer: FraudScorer) -> None:
        result = scorer.score(make_event(ip_address="10.0.0.7"))

        assert result.components.ip == 60

    def test_ip_datacenter_asn(self, scorer: FraudScorer) -> None:
        context = RequestContext(hints=OriginHints(asn=16509))

        result = scorer.score(make_event(), context)

        assert result.components.ip == 45

    def test_network_threat_score_capped(self, scorer: FraudScorer) -> None:
        context = RequestContext(hints=OriginHints(threat_score=90))

        result = scorer.score(make_event(), context)

        assert result.components.network == 50

    def test_network_session_ip_churn(
        self, scorer: FraudScorer, history: InMemoryEventRepo
    ) -> None:
        """More than five distinct IPs adds both tiers."""
        for i in range(6):
            history.insert(
                make_event(
                    ip_address=f"198.51.100.{i}",
                    timestamp=NOW - timedelta(minutes=10 + i),
                )
            )

        result = scorer.score(make_event())

        assert result.components.network == 50

    def test_pattern_rapid_country_switching(
        self, scorer: FraudScorer, history: InMemoryEventRepo
    ) -> None:
        for i, country in enumerate(["FR", "DE", "BR"]):
            history.insert(
                make_event(country_code=country, timestamp=NOW - timedelta(minutes=i + 5))
            )

        result = scorer.score(make_event(country_code="JP"))

        assert result.components.pattern == 30

    def test_pattern_rules_are_configurable(self) -> None:
        config = build_fraud_config(FraudRules(pattern_rules=["no_client_metrics"]))
        scorer = FraudScorer(config=config)

        result = scorer.score(make_event(utm_source="scraper"))

        assert result.components.pattern == 0


class TestCompositeArithmetic:
    def test_composite_is_rounded_weighted_sum(self) -> None:
        components = ComponentScores(
            ip=65, behavior=25, device=40, network=80, pattern=35, velocity=0
        )

        assert composite_score(components, WeightTable()) == 47

    def test_composite_capped(self) -> None:
        heavy = WeightTable(ip=1, behavior=1, device=1, network=1, pattern=1, velocity=1)
        components = ComponentScores(ip=100, behavior=100)

        assert composite_score(components, heavy) == 100

    def test_custom_weight_table(self) -> None:
        """Weights are swappable per scorer."""
        config = FraudConfig(
            weights=WeightTable(
                ip=0, behavior=0, device=1.0, network=0, pattern=0, velocity=0
            )
        )
        scorer = FraudScorer(config=config)

        result = scorer.score(make_event(user_agent=HEADLESS_UA))

        assert result.score == 40

    def test_default_rule_set_names(self) -> None:
        rule_set = build_rule_set(FraudConfig())

        assert [r.name for r in rule_set["velocity"]] == [
            "ip_clicks_per_minute",
            "ip_clicks_per_hour",
        ]
        assert len(rule_set["ip"]) == 9


class TestThresholds:
    @pytest.mark.parametrize(
        ("score", "level", "action"),
        [
            (0, "minimal", "allow"),
            (19, "minimal", "allow"),
            (20, "low", "allow"),
            (40, "medium", "monitor"),
            (59, "medium", "monitor"),
            (60, "high", "challenge"),
            (80, "critical", "block"),
            (100, "critical", "block"),
        ],
    )
    def test_boundaries(self, score: int, level: str, action: str) -> None:
        assert classify_threat_level(score) == level
        assert recommend_action(score) == action

    def test_monotonic_in_score(self) -> None:
        levels = ["minimal", "low", "medium", "high", "critical"]
        actions = ["allow", "monitor", "challenge", "block"]
        prev_level = prev_action = 0
        for score in range(101):
            lvl = levels.index(classify_threat_level(score))
            act = actions.index(recommend_action(score))
            assert lvl >= prev_level
            assert act >= prev_action
            prev_level, prev_action = lvl, act
