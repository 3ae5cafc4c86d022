"""
Fraud component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from clickguard.core.entities import Event, ThreatLevel
from clickguard.core.request import RequestContext

RecommendedAction = Literal["allow", "monitor", "challenge", "block"]
ComponentName = Literal["ip", "behavior", "device", "network", "pattern", "velocity"]

COMPONENT_NAMES: tuple[ComponentName, ...] = (
    "ip",
    "behavior",
    "device",
    "network",
    "pattern",
    "velocity",
)


@dataclass(frozen=True)
class FraudError:
    """Fraud scoring error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class ComponentScores:
    """Six component scores, each clamped to [0, 100]."""

    ip: int = 0
    behavior: int = 0
    device: int = 0
    network: int = 0
    pattern: int = 0
    velocity: int = 0

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in COMPONENT_NAMES}


@dataclass(frozen=True)
class FraudAssessment:
    """Composite fraud score for one event."""

    score: int
    components: ComponentScores
    threat_level: ThreatLevel
    action: RecommendedAction
    triggered_rules: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReputationUpdate:
    """
    One scoring result to fold into an IP's reputation.

    Counters grow by one (or zero); flags are only ever switched on.
    """

    ip_address: str
    base_score: int
    observed_at: datetime
    suspicious: bool = False
    blocked: bool = False
    vpn: bool = False
    proxy: bool = False
    tor: bool = False
    hosting: bool = False


@dataclass(frozen=True)
class ScoreEventInput:
    """Input for scoring one event."""

    event: Event
    context: RequestContext = field(default_factory=RequestContext)


@dataclass(frozen=True)
class ScoreEventOutput:
    """Output of fraud scoring."""

    assessment: FraudAssessment
    errors: list[FraudError]
    success: bool
