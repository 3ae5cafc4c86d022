"""
Fraud scorer implementation.

Composite score = round(sum(component * weight)), capped to [0, 100].
Threat level and recommended action are step functions of the composite.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime

from clickguard.components.geo import classify_connection_type, detect_vpn_proxy
from clickguard.core.entities import Event, FraudReputation, ThreatLevel
from clickguard.core.request import RequestContext
from clickguard.core.timewindows import ensure_utc

from .models import (
    COMPONENT_NAMES,
    ComponentName,
    ComponentScores,
    FraudAssessment,
    RecommendedAction,
    ReputationUpdate,
)
from .ports import EventHistoryPort, ReputationRepoPort
from .rules import RuleSet, ScoringContext, build_rule_set, evaluate_component

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class WeightTable:
    """Composite weights per component."""

    ip: float = 0.25
    behavior: float = 0.20
    device: float = 0.15
    network: float = 0.20
    pattern: float = 0.10
    velocity: float = 0.10

    def weight(self, component: ComponentName) -> float:
        return getattr(self, component)


@dataclass(frozen=True)
class FraudConfig:
    """Fraud scoring configuration."""

    weights: WeightTable = field(default_factory=WeightTable)

    # Threat levels (score >= threshold)
    threat_critical: int = 80
    threat_high: int = 60
    threat_medium: int = 40
    threat_low: int = 20

    # Recommended actions (score >= threshold)
    action_block: int = 80
    action_challenge: int = 60
    action_monitor: int = 40

    # Reputation counters
    unseen_base_score: int = 30
    suspicious_score: int = 60
    blocked_score: int = 80

    min_user_agent_length: int = 20
    denylisted_ip_prefixes: tuple[str, ...] = ("192.168.", "10.", "172.16.", "127.")
    datacenter_asns: frozenset[int] = frozenset({15169, 16509, 8075, 14061, 20473, 16276})
    suspicious_asns: frozenset[int] = frozenset({13335, 9009, 60068, 201011, 24940})
    headless_markers: tuple[str, ...] = ("HeadlessChrome", "PhantomJS", "Nightmare", "Selenium")
    standard_resolutions: frozenset[str] = frozenset(
        {
            "1920x1080",
            "1366x768",
            "1440x900",
            "1536x864",
            "1280x720",
            "1600x900",
            "2560x1440",
            "3840x2160",
            "375x667",
            "414x896",
            "360x640",
            "412x915",
            "390x844",
            "393x852",
            "428x926",
            "384x854",
        }
    )
    suspicious_utm_tokens: tuple[str, ...] = ("bot", "crawler", "scraper")
    pattern_rules: tuple[str, ...] = (
        "rapid_country_switching",
        "suspicious_utm_source",
        "no_client_metrics",
    )


DEFAULT_CONFIG = FraudConfig()


# --- Pure functions ---


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def composite_score(components: ComponentScores, weights: WeightTable) -> int:
    """Weighted composite, rounded half up and capped to [0, 100]."""
    total = sum(
        getattr(components, name) * weights.weight(name) for name in COMPONENT_NAMES
    )
    return max(0, min(100, round_half_up(total)))


def classify_threat_level(score: int, config: FraudConfig = DEFAULT_CONFIG) -> ThreatLevel:
    if score >= config.threat_critical:
        return "critical"
    if score >= config.threat_high:
        return "high"
    if score >= config.threat_medium:
        return "medium"
    if score >= config.threat_low:
        return "low"
    return "minimal"


def recommend_action(score: int, config: FraudConfig = DEFAULT_CONFIG) -> RecommendedAction:
    if score >= config.action_block:
        return "block"
    if score >= config.action_challenge:
        return "challenge"
    if score >= config.action_monitor:
        return "monitor"
    return "allow"


def build_reputation_update(
    ip_address: str,
    score: int,
    now: datetime,
    config: FraudConfig = DEFAULT_CONFIG,
    vpn: bool = False,
    proxy: bool = False,
    tor: bool = False,
    hosting: bool = False,
) -> ReputationUpdate:
    """Classify one composite score against the reputation thresholds."""
    return ReputationUpdate(
        ip_address=ip_address,
        base_score=score,
        observed_at=now,
        suspicious=score >= config.suspicious_score,
        blocked=score >= config.blocked_score,
        vpn=vpn,
        proxy=proxy,
        tor=tor,
        hosting=hosting,
    )


def merge_reputation(
    existing: FraudReputation | None, update: ReputationUpdate
) -> FraudReputation:
    """
    Fold one scoring result into an IP's reputation.

    The base score is replaced, counters are incremented and provider
    flags are OR-ed so a flag once set is never cleared.
    """
    current = existing or FraudReputation(ip_address=update.ip_address)
    return current.model_copy(
        update={
            "base_score": update.base_score,
            "vpn_detected": current.vpn_detected or update.vpn,
            "proxy_detected": current.proxy_detected or update.proxy,
            "tor_detected": current.tor_detected or update.tor,
            "hosting_provider": current.hosting_provider or update.hosting,
            "total_events": current.total_events + 1,
            "suspicious_events": current.suspicious_events + int(update.suspicious),
            "blocked_events": current.blocked_events + int(update.blocked),
            "last_updated": update.observed_at,
        }
    )


# --- In-Memory Repository ---


class InMemoryReputationRepo:
    """In-memory reputation store for testing/dev."""

    def __init__(self) -> None:
        self._rows: dict[str, FraudReputation] = {}
        self._lock = threading.Lock()

    def get(self, ip_address: str) -> FraudReputation | None:
        with self._lock:
            return self._rows.get(ip_address)

    def upsert(self, reputation: FraudReputation) -> FraudReputation:
        with self._lock:
            self._rows[reputation.ip_address] = reputation
            return reputation

    def record(self, update: ReputationUpdate) -> FraudReputation:
        with self._lock:
            merged = merge_reputation(self._rows.get(update.ip_address), update)
            self._rows[update.ip_address] = merged
            return merged


# --- Service ---


class FraudScorer:
    """
    Scores events and maintains per-IP reputation.

    Rule failures contribute 0; reputation write failures are logged.
    Neither surfaces to the caller.
    """

    def __init__(
        self,
        reputations: ReputationRepoPort | None = None,
        history: EventHistoryPort | None = None,
        config: FraudConfig | None = None,
        rule_set: RuleSet | None = None,
    ) -> None:
        self._reputations = reputations
        self._history = history
        self._config = config or DEFAULT_CONFIG
        self._rules = rule_set or build_rule_set(self._config)

    @property
    def config(self) -> FraudConfig:
        return self._config

    def score(self, event: Event, context: RequestContext | None = None) -> FraudAssessment:
        """Score one event and record the result against its IP."""
        ctx = ScoringContext(
            event=event,
            request=context or RequestContext(),
            config=self._config,
            history=self._history,
            reputations=self._reputations,
        )

        scores: dict[str, int] = {}
        triggered: list[str] = []
        for name in COMPONENT_NAMES:
            value, fired = evaluate_component(name, self._rules.get(name, ()), ctx)
            scores[name] = value
            triggered.extend(fired)

        components = ComponentScores(**scores)
        total = composite_score(components, self._config.weights)
        assessment = FraudAssessment(
            score=total,
            components=components,
            threat_level=classify_threat_level(total, self._config),
            action=recommend_action(total, self._config),
            triggered_rules=triggered,
        )

        self._record(event, ctx.request, total)
        return assessment

    def _record(self, event: Event, request: RequestContext, score: int) -> None:
        if self._reputations is None or not event.ip_address:
            return
        vpn, proxy = detect_vpn_proxy(event.isp)
        update = build_reputation_update(
            event.ip_address,
            score,
            ensure_utc(event.timestamp),
            self._config,
            vpn=vpn,
            proxy=proxy,
            tor=request.tor_exit,
            hosting=classify_connection_type(event.isp) == "datacenter",
        )
        try:
            self._reputations.record(update)
        except Exception:
            logger.exception(
                "Failed to update fraud reputation for ip=%s score=%d",
                event.ip_address,
                score,
            )


def create_fraud_scorer(
    reputations: ReputationRepoPort | None = None,
    history: EventHistoryPort | None = None,
    config: FraudConfig | None = None,
) -> FraudScorer:
    """Factory for the fraud scorer."""
    return FraudScorer(
        reputations=reputations or InMemoryReputationRepo(),
        history=history,
        config=config,
    )
