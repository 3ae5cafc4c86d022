"""
Bots component - heuristic bot and crawler classification.
"""

from ._impl import (
    DEFAULT_CONFIG,
    BotConfig,
    BotDetector,
    BotWeightTable,
    confidence_from_checks,
    create_bot_detector,
    has_behavior_anomaly,
    has_fingerprint_anomaly,
    has_honeypot_value,
    has_uniform_intervals,
    is_known_crawler,
    matches_bot_signature,
)
from .component import build_bot_config, run_detect
from .models import BotChecks, BotVerdict, DetectBotInput, DetectBotOutput
from .ports import SessionHistoryPort

__all__ = [
    # Entry points
    "build_bot_config",
    "run_detect",
    # Models
    "BotChecks",
    "BotVerdict",
    "DetectBotInput",
    "DetectBotOutput",
    # Ports
    "SessionHistoryPort",
    # Implementation
    "DEFAULT_CONFIG",
    "BotConfig",
    "BotDetector",
    "BotWeightTable",
    "confidence_from_checks",
    "create_bot_detector",
    "has_behavior_anomaly",
    "has_fingerprint_anomaly",
    "has_honeypot_value",
    "has_uniform_intervals",
    "is_known_crawler",
    "matches_bot_signature",
]
