"""
Rate limit component - per-identifier request limiting.

Counts requests per identifier (ip / session / project) inside a lookback
window and flags when the configured threshold is reached.

Invariants:
- I1: The request that reaches the limit is refused and recorded as a violation
- I2: Refused requests do not increment the counter
- I3: Counter entries older than the prune horizon are removed on write
- I4: Unknown scopes are never limited
"""

from __future__ import annotations

from clickguard.rules.models import RateLimitRules

from ._impl import RateLimitConfig, RateLimitService
from .models import (
    CheckRateLimitInput,
    CheckRateLimitOutput,
    RateLimitError,
    RateLimitScope,
    ScopeLimit,
)
from .ports import RateLimitRepoPort, TimePort


def build_rate_limit_config(rules: RateLimitRules | None) -> RateLimitConfig:
    """Build rate limit config from the rules section."""
    if rules is None:
        return RateLimitConfig()
    return RateLimitConfig(
        ip=ScopeLimit(rules.ip.max_requests, rules.ip.window_seconds),
        session=ScopeLimit(rules.session.max_requests, rules.session.window_seconds),
        project=ScopeLimit(rules.project.max_requests, rules.project.window_seconds),
        prune_after_seconds=rules.prune_after_seconds,
    )


def run_check(
    inp: CheckRateLimitInput,
    *,
    repo: RateLimitRepoPort,
    time_port: TimePort | None = None,
    rules: RateLimitRules | None = None,
) -> CheckRateLimitOutput:
    """
    Check and record one request.

    Args:
        inp: Identifier and scope name.
        repo: Request log port.
        time_port: Optional time port.
        rules: Optional rate limit rules section.

    Returns:
        CheckRateLimitOutput with the decision.
    """
    errors: list[RateLimitError] = []
    if inp.scope not in {s.value for s in RateLimitScope}:
        errors.append(
            RateLimitError(
                code="unknown_scope",
                message=f"Unknown rate limit scope: {inp.scope}",
                field_name="scope",
            )
        )

    service = RateLimitService(
        repo=repo, time_port=time_port, config=build_rate_limit_config(rules)
    )
    decision = service.check_and_record(inp.identifier, inp.scope)
    return CheckRateLimitOutput(
        decision=decision,
        errors=errors,
        success=len(errors) == 0,
    )
