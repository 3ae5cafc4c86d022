"""
Rate limit component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RateLimitScope(str, Enum):
    """What a counter is keyed on."""

    IP = "ip"
    SESSION = "session"
    PROJECT = "project"


@dataclass(frozen=True)
class ScopeLimit:
    """Allowed requests per lookback window."""

    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitError:
    """Rate limit error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class CheckRateLimitInput:
    """Input for checking (and recording) one request."""

    identifier: str
    scope: str


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one check."""

    identifier: str
    scope: str
    exceeded: bool
    request_count: int = 0
    limit: int | None = None


@dataclass(frozen=True)
class CheckRateLimitOutput:
    """Output of a rate limit check."""

    decision: RateLimitDecision
    errors: list[RateLimitError]
    success: bool
