"""
Fraud component - weighted multi-factor fraud scoring.

Computes a 0-100 composite from six component scores (ip reputation,
behavior, device, network, pattern, velocity) and keeps a running
reputation record per IP.

Invariants:
- I1: Each component score is clamped to [0, 100]
- I2: score = round(sum(component * weight)), always within [0, 100]
- I3: threat_level and action are non-decreasing in score
- I4: Every call increments the IP's total_events by exactly 1
- I5: A rule that cannot be computed contributes 0
"""

from __future__ import annotations

from clickguard.rules.models import FraudRules

from ._impl import FraudConfig, FraudScorer, WeightTable
from .models import FraudError, ScoreEventInput, ScoreEventOutput
from .ports import EventHistoryPort, ReputationRepoPort


def build_fraud_config(rules: FraudRules | None) -> FraudConfig:
    """Build fraud config from the rules section."""
    if rules is None:
        return FraudConfig()
    w = rules.weights
    return FraudConfig(
        weights=WeightTable(
            ip=w.ip,
            behavior=w.behavior,
            device=w.device,
            network=w.network,
            pattern=w.pattern,
            velocity=w.velocity,
        ),
        threat_critical=rules.threat_levels.critical,
        threat_high=rules.threat_levels.high,
        threat_medium=rules.threat_levels.medium,
        threat_low=rules.threat_levels.low,
        action_block=rules.actions.block,
        action_challenge=rules.actions.challenge,
        action_monitor=rules.actions.monitor,
        unseen_base_score=rules.unseen_base_score,
        suspicious_score=rules.suspicious_score,
        blocked_score=rules.blocked_score,
        min_user_agent_length=rules.min_user_agent_length,
        denylisted_ip_prefixes=tuple(rules.denylisted_ip_prefixes),
        datacenter_asns=frozenset(rules.datacenter_asns),
        suspicious_asns=frozenset(rules.suspicious_asns),
        headless_markers=tuple(rules.headless_markers),
        standard_resolutions=frozenset(rules.standard_resolutions),
        suspicious_utm_tokens=tuple(t.lower() for t in rules.suspicious_utm_tokens),
        pattern_rules=tuple(rules.pattern_rules),
    )


def run_score(
    inp: ScoreEventInput,
    *,
    reputations: ReputationRepoPort | None = None,
    history: EventHistoryPort | None = None,
    rules: FraudRules | None = None,
) -> ScoreEventOutput:
    """
    Score one event for fraud.

    Args:
        inp: The enriched event and its request context.
        reputations: Optional reputation store (read and updated).
        history: Optional event history for session/IP lookups.
        rules: Optional fraud rules section.

    Returns:
        ScoreEventOutput with the assessment.
    """
    errors: list[FraudError] = []
    if not inp.event.ip_address:
        errors.append(
            FraudError(
                code="missing_ip",
                message="Event has no IP address; reputation not tracked",
                field_name="ip_address",
            )
        )

    scorer = FraudScorer(
        reputations=reputations,
        history=history,
        config=build_fraud_config(rules),
    )
    assessment = scorer.score(inp.event, inp.context)

    return ScoreEventOutput(
        assessment=assessment,
        errors=errors,
        success=len(errors) == 0,
    )
