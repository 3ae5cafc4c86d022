"""
Fraud component - weighted multi-factor fraud scoring.
"""

from ._impl import (
    DEFAULT_CONFIG,
    FraudConfig,
    FraudScorer,
    InMemoryReputationRepo,
    WeightTable,
    build_reputation_update,
    classify_threat_level,
    composite_score,
    create_fraud_scorer,
    merge_reputation,
    recommend_action,
    round_half_up,
)
from .component import build_fraud_config, run_score
from .models import (
    COMPONENT_NAMES,
    ComponentScores,
    FraudAssessment,
    FraudError,
    RecommendedAction,
    ReputationUpdate,
    ScoreEventInput,
    ScoreEventOutput,
)
from .ports import EventHistoryPort, ReputationRepoPort
from .rules import (
    PATTERN_RULES,
    PartialSignalError,
    ScoreRule,
    ScoringContext,
    build_rule_set,
    evaluate_component,
    flag,
    tiers,
)

__all__ = [
    # Entry points
    "build_fraud_config",
    "run_score",
    # Models
    "COMPONENT_NAMES",
    "ComponentScores",
    "FraudAssessment",
    "FraudError",
    "RecommendedAction",
    "ReputationUpdate",
    "ScoreEventInput",
    "ScoreEventOutput",
    # Ports
    "EventHistoryPort",
    "ReputationRepoPort",
    # Rules
    "PATTERN_RULES",
    "PartialSignalError",
    "ScoreRule",
    "ScoringContext",
    "build_rule_set",
    "evaluate_component",
    "flag",
    "tiers",
    # Implementation
    "DEFAULT_CONFIG",
    "FraudConfig",
    "FraudScorer",
    "InMemoryReputationRepo",
    "WeightTable",
    "build_reputation_update",
    "classify_threat_level",
    "composite_score",
    "create_fraud_scorer",
    "merge_reputation",
    "recommend_action",
    "round_half_up",
]
