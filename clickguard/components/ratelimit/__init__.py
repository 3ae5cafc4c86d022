"""
Rate limit component - per-identifier request limiting.
"""

from ._impl import (
    DEFAULT_CONFIG,
    InMemoryRateLimitRepo,
    RateLimitConfig,
    RateLimitService,
    counter_key,
    create_rate_limit_service,
)
from .component import build_rate_limit_config, run_check
from .models import (
    CheckRateLimitInput,
    CheckRateLimitOutput,
    RateLimitDecision,
    RateLimitError,
    RateLimitScope,
    ScopeLimit,
)
from .ports import RateLimitRepoPort, TimePort

__all__ = [
    # Entry points
    "build_rate_limit_config",
    "run_check",
    # Models
    "CheckRateLimitInput",
    "CheckRateLimitOutput",
    "RateLimitDecision",
    "RateLimitError",
    "RateLimitScope",
    "ScopeLimit",
    # Ports
    "RateLimitRepoPort",
    "TimePort",
    # Implementation
    "DEFAULT_CONFIG",
    "InMemoryRateLimitRepo",
    "RateLimitConfig",
    "RateLimitService",
    "counter_key",
    "create_rate_limit_service",
]
