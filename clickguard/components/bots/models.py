"""
Bot detection component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from clickguard.core.entities import Event
from clickguard.core.request import RequestContext


@dataclass(frozen=True)
class BotChecks:
    """Outcome of the five independent checks."""

    user_agent: bool = False
    origin_verified: bool = False
    behavior: bool = False
    honeypot: bool = False
    fingerprint: bool = False

    def any(self) -> bool:
        return (
            self.user_agent
            or self.origin_verified
            or self.behavior
            or self.honeypot
            or self.fingerprint
        )


@dataclass(frozen=True)
class BotVerdict:
    """Bot classification for one event."""

    is_bot: bool
    is_crawler: bool
    confidence: int
    checks: BotChecks = field(default_factory=BotChecks)


@dataclass(frozen=True)
class DetectBotInput:
    """Input for classifying one event."""

    event: Event
    context: RequestContext = field(default_factory=RequestContext)


@dataclass(frozen=True)
class DetectBotOutput:
    """Output of bot detection."""

    verdict: BotVerdict
    errors: list[str]
    success: bool
