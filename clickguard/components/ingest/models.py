"""
Ingest component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from clickguard.components.bots.models import BotVerdict
from clickguard.components.fraud.models import FraudAssessment
from clickguard.components.geo.models import GeoSource
from clickguard.components.ratelimit.models import RateLimitDecision
from clickguard.core.entities import Event
from clickguard.core.request import RequestContext


@dataclass(frozen=True)
class IngestError:
    """Payload validation error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class IngestEventInput:
    """Raw event payload plus what the transport knows about the request."""

    payload: dict[str, Any]
    context: RequestContext = field(default_factory=RequestContext)
    remote_addr: str | None = None


@dataclass(frozen=True)
class IngestOutput:
    """Enriched, scored event ready for persistence."""

    event: Event | None
    fraud: FraudAssessment | None = None
    bot: BotVerdict | None = None
    geo_source: GeoSource | None = None
    rate_limits: list[RateLimitDecision] = field(default_factory=list)
    errors: list[IngestError] = field(default_factory=list)
    success: bool = False

    @property
    def rate_limited(self) -> bool:
        return any(d.exceeded for d in self.rate_limits)

    def exceeded_scopes(self) -> list[str]:
        return [d.scope for d in self.rate_limits if d.exceeded]
