"""
Bots component - heuristic bot and crawler classification.

Checks user-agent signatures, origin bot verification, behavioral timing,
honeypot fields and fingerprint anomalies.

Invariants:
- I1: is_bot is true iff at least one check is positive
- I2: confidence is the weighted sum of positive checks, 0-100
- I3: is_crawler is an allowlist match independent of is_bot
"""

from __future__ import annotations

from clickguard.rules.models import BotRules

from ._impl import BotConfig, BotDetector, BotWeightTable
from .models import DetectBotInput, DetectBotOutput
from .ports import SessionHistoryPort


def build_bot_config(rules: BotRules | None) -> BotConfig:
    """Build bot config from the rules section."""
    if rules is None:
        return BotConfig()
    w = rules.weights
    return BotConfig(
        weights=BotWeightTable(
            user_agent=w.user_agent,
            origin_verified=w.origin_verified,
            behavior=w.behavior,
            honeypot=w.honeypot,
            fingerprint=w.fingerprint,
        ),
        honeypot_field=rules.honeypot_field,
        interval_sample_size=rules.interval_sample_size,
        user_agent_patterns=tuple(p.lower() for p in rules.user_agent_patterns),
        crawler_patterns=tuple(p.lower() for p in rules.crawler_patterns),
        headless_markers=tuple(rules.headless_markers),
    )


def run_detect(
    inp: DetectBotInput,
    *,
    history: SessionHistoryPort | None = None,
    rules: BotRules | None = None,
) -> DetectBotOutput:
    """
    Classify one event.

    Args:
        inp: The event and its request context.
        history: Optional session history for interval checks.
        rules: Optional bot rules section.

    Returns:
        DetectBotOutput with the verdict.
    """
    detector = BotDetector(history=history, config=build_bot_config(rules))
    verdict = detector.detect(inp.event, inp.context)
    return DetectBotOutput(verdict=verdict, errors=[], success=True)
