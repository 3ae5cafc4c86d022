"""
Named fraud scoring rules.

Each component score is the clamped sum of an ordered tuple of ScoreRule
objects. A rule that cannot be evaluated (store down, history missing)
contributes 0 and is logged; it never aborts the scoring call.

Rule sets are plain data built from a FraudConfig, so alternative sets can
be passed to the scorer for testing or tuning.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from functools import cached_property
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from clickguard.core.entities import Event, FraudReputation
from clickguard.core.request import RequestContext
from clickguard.core.timewindows import ensure_utc, max_events_in_span, window_start

from .models import ComponentName
from .ports import EventHistoryPort, ReputationRepoPort

if TYPE_CHECKING:
    from ._impl import FraudConfig

logger = logging.getLogger(__name__)


class PartialSignalError(Exception):
    """A rule's inputs are unavailable."""


# --- Context ---


class ScoringContext:
    """
    Everything a rule may look at for one event.

    Store lookups are lazy and cached so each runs at most once per event.
    """

    def __init__(
        self,
        event: Event,
        request: RequestContext,
        config: FraudConfig,
        history: EventHistoryPort | None = None,
        reputations: ReputationRepoPort | None = None,
    ) -> None:
        self.event = event
        self.request = request
        self.config = config
        self._history = history
        self._reputations = reputations

    @property
    def now(self) -> datetime:
        return ensure_utc(self.event.timestamp)

    def _require_history(self) -> EventHistoryPort:
        if self._history is None:
            raise PartialSignalError("no event history available")
        return self._history

    @cached_property
    def reputation(self) -> FraudReputation | None:
        if self._reputations is None or not self.event.ip_address:
            return None
        return self._reputations.get(self.event.ip_address)

    @cached_property
    def session_events_last_hour(self) -> list[Event]:
        return self._require_history().list_session_events(
            self.event.session_id, since=window_start(self.now, 3600)
        )

    @cached_property
    def previous_clicked_url(self) -> str | None:
        recent = self._require_history().list_session_events(
            self.event.session_id, limit=10
        )
        for prior in reversed(recent):
            if prior.id != self.event.id and prior.clicked_url:
                return prior.clicked_url
        return None

    @cached_property
    def session_ips(self) -> set[str]:
        ips = self._require_history().distinct_session_values(
            self.event.session_id, "ip_address"
        )
        if self.event.ip_address:
            ips = ips | {self.event.ip_address}
        return ips

    @cached_property
    def session_countries(self) -> set[str]:
        countries = self._require_history().distinct_session_values(
            self.event.session_id, "country_code"
        )
        countries = countries | {self.event.country_code}
        return {c for c in countries if c and c != "XX"}

    def ip_events_within(self, seconds: int) -> int:
        if not self.event.ip_address:
            return 0
        return self._require_history().count_ip_events(
            self.event.ip_address, window_start(self.now, seconds), self.now
        )

    @cached_property
    def ip_events_last_minute(self) -> int:
        return self.ip_events_within(60)

    @cached_property
    def ip_events_last_hour(self) -> int:
        return self.ip_events_within(3600)

    @property
    def asn(self) -> int | None:
        return self.request.asn if self.request.asn is not None else self.event.as_number


# --- Rule objects ---


@dataclass(frozen=True)
class ScoreRule:
    """A named contribution to one component score."""

    name: str
    evaluate: Callable[[ScoringContext], int]


def flag(name: str, points: int, predicate: Callable[[ScoringContext], bool]) -> ScoreRule:
    """Rule adding fixed points when the predicate holds."""
    return ScoreRule(name, lambda ctx: points if predicate(ctx) else 0)


def tiers(
    name: str,
    measure: Callable[[ScoringContext], int],
    steps: tuple[tuple[int, int], ...],
) -> ScoreRule:
    """Rule adding points for every (threshold, points) step exceeded."""

    def evaluate(ctx: ScoringContext) -> int:
        value = measure(ctx)
        return sum(points for threshold, points in steps if value > threshold)

    return ScoreRule(name, evaluate)


RuleSet = Mapping[ComponentName, tuple[ScoreRule, ...]]


def evaluate_component(
    component: str,
    rules: tuple[ScoreRule, ...],
    ctx: ScoringContext,
) -> tuple[int, list[str]]:
    """Clamped component score plus the names of rules that fired."""
    total = 0
    fired: list[str] = []
    for rule in rules:
        try:
            points = rule.evaluate(ctx)
        except Exception as e:
            logger.warning(
                "Fraud rule %s.%s skipped for event %s: %s",
                component,
                rule.name,
                ctx.event.id,
                e,
            )
            points = 0
        if points:
            fired.append(f"{component}.{rule.name}")
        total += points
    return max(0, min(100, total)), fired


# --- IP reputation ---


def _base_score(ctx: ScoringContext) -> int:
    rep = ctx.reputation
    return rep.base_score if rep is not None else ctx.config.unseen_base_score


def _rep_flag(attr: str) -> Callable[[ScoringContext], bool]:
    def check(ctx: ScoringContext) -> bool:
        rep = ctx.reputation
        return bool(rep is not None and getattr(rep, attr))

    return check


def _tor_exit(ctx: ScoringContext) -> bool:
    return ctx.request.tor_exit or _rep_flag("tor_detected")(ctx)


def _in_denylisted_range(ctx: ScoringContext) -> bool:
    ip = ctx.event.ip_address or ""
    return any(ip.startswith(prefix) for prefix in ctx.config.denylisted_ip_prefixes)


def ip_rules(config: FraudConfig) -> tuple[ScoreRule, ...]:
    return (
        ScoreRule("base_score", _base_score),
        flag("vpn", 20, _rep_flag("vpn_detected")),
        flag("proxy", 25, _rep_flag("proxy_detected")),
        flag("tor", 35, _tor_exit),
        flag("hosting_provider", 15, _rep_flag("hosting_provider")),
        flag(
            "suspicious_history",
            10,
            lambda ctx: ctx.reputation is not None and ctx.reputation.suspicious_events > 10,
        ),
        flag(
            "blocked_history",
            15,
            lambda ctx: ctx.reputation is not None and ctx.reputation.blocked_events > 5,
        ),
        flag("denylisted_range", 30, _in_denylisted_range),
        flag("datacenter_asn", 15, lambda ctx: ctx.asn in ctx.config.datacenter_asns),
    )


# --- Behavior ---


def _rapid_activity(ctx: ScoringContext) -> bool:
    timestamps = [e.timestamp for e in ctx.session_events_last_hour]
    timestamps.append(ctx.event.timestamp)
    return max_events_in_span(timestamps, 60) > 10


def _instant_full_scroll(ctx: ScoringContext) -> bool:
    ev = ctx.event
    return (
        ev.scroll_depth is not None
        and ev.scroll_depth >= 100
        and ev.time_on_page is not None
        and ev.time_on_page < 1
    )


def _no_timing_signals(ctx: ScoringContext) -> bool:
    return ctx.event.page_load_time is None and ctx.event.dom_interactive_time is None


def _hostname(url: str) -> str | None:
    host = urlparse(url).hostname
    return host.lower() if host else None


def _referrer_mismatch(ctx: ScoringContext) -> bool:
    if not ctx.event.referrer_url:
        return False
    previous = ctx.previous_clicked_url
    if not previous:
        return False
    return _hostname(previous) != _hostname(ctx.event.referrer_url)


def behavior_rules(config: FraudConfig) -> tuple[ScoreRule, ...]:
    return (
        flag("rapid_session_activity", 30, _rapid_activity),
        flag("zero_time_on_page", 10, lambda ctx: ctx.event.time_on_page == 0),
        flag("instant_full_scroll", 20, _instant_full_scroll),
        flag("no_timing_signals", 15, _no_timing_signals),
        flag("referrer_mismatch", 10, _referrer_mismatch),
    )


# --- Device ---


def _headless(ctx: ScoringContext) -> bool:
    ua = ctx.event.user_agent or ""
    return any(marker in ua for marker in ctx.config.headless_markers)


def _short_user_agent(ctx: ScoringContext) -> bool:
    ua = ctx.event.user_agent
    return not ua or len(ua) < ctx.config.min_user_agent_length


def _impossible_combination(ctx: ScoringContext) -> bool:
    ev = ctx.event
    if ev.device_type == "mobile" and (ev.screen_width or 0) > 1920:
        return True
    if ev.screen_width and ev.viewport_width and ev.viewport_width > ev.screen_width:
        return True
    if ev.screen_height and ev.viewport_height and ev.viewport_height > ev.screen_height:
        return True
    if ev.os_name == "iOS" and ev.browser_name and not (
        "Safari" in ev.browser_name or "Chrome" in ev.browser_name
    ):
        return True
    return False


def _nonstandard_resolution(ctx: ScoringContext) -> bool:
    ev = ctx.event
    if not ev.screen_width or not ev.screen_height:
        return False
    return f"{ev.screen_width}x{ev.screen_height}" not in ctx.config.standard_resolutions


def device_rules(config: FraudConfig) -> tuple[ScoreRule, ...]:
    return (
        flag("headless_user_agent", 40, _headless),
        flag("missing_user_agent", 20, _short_user_agent),
        flag("impossible_combination", 30, _impossible_combination),
        flag("nonstandard_resolution", 10, _nonstandard_resolution),
    )


# --- Network ---


def network_rules(config: FraudConfig) -> tuple[ScoreRule, ...]:
    return (
        ScoreRule("origin_threat_score", lambda ctx: min(max(ctx.request.threat_score, 0), 50)),
        flag("verified_bot", 30, lambda ctx: ctx.request.verified_bot),
        flag("suspicious_asn", 20, lambda ctx: ctx.asn in ctx.config.suspicious_asns),
        tiers("session_ip_churn", lambda ctx: len(ctx.session_ips), ((3, 20), (5, 30))),
    )


# --- Pattern ---


def _suspicious_utm_source(ctx: ScoringContext) -> bool:
    source = (ctx.event.utm_source or "").lower()
    return any(token in source for token in ctx.config.suspicious_utm_tokens)


def _no_client_metrics(ctx: ScoringContext) -> bool:
    ev = ctx.event
    return ev.page_load_time is None and ev.dom_interactive_time is None and not ev.screen_width


PATTERN_RULES: dict[str, ScoreRule] = {
    "rapid_country_switching": flag(
        "rapid_country_switching", 30, lambda ctx: len(ctx.session_countries) > 3
    ),
    "suspicious_utm_source": flag("suspicious_utm_source", 20, _suspicious_utm_source),
    "no_client_metrics": flag("no_client_metrics", 15, _no_client_metrics),
}


def pattern_rules(config: FraudConfig) -> tuple[ScoreRule, ...]:
    return tuple(PATTERN_RULES[name] for name in config.pattern_rules if name in PATTERN_RULES)


# --- Velocity ---


def velocity_rules(config: FraudConfig) -> tuple[ScoreRule, ...]:
    return (
        tiers(
            "ip_clicks_per_minute",
            lambda ctx: ctx.ip_events_last_minute,
            ((10, 20), (20, 30), (50, 50)),
        ),
        tiers(
            "ip_clicks_per_hour",
            lambda ctx: ctx.ip_events_last_hour,
            ((100, 10), (500, 20), (1000, 30)),
        ),
    )


def build_rule_set(config: FraudConfig) -> dict[ComponentName, tuple[ScoreRule, ...]]:
    """Default rule set for a configuration."""
    return {
        "ip": ip_rules(config),
        "behavior": behavior_rules(config),
        "device": device_rules(config),
        "network": network_rules(config),
        "pattern": pattern_rules(config),
        "velocity": velocity_rules(config),
    }


