"""
Rate limiter implementation.

Fixed-lookback counting: a request is refused when the number of recorded
requests for the same key inside [now - window, now] has reached the limit.
Refused requests are recorded as violations, not as requests.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from clickguard.core.entities import RateLimitViolation
from clickguard.core.timewindows import ensure_utc, window_start

from .models import RateLimitDecision, RateLimitScope, ScopeLimit
from .ports import RateLimitRepoPort, TimePort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-scope limits."""

    ip: ScopeLimit = field(default_factory=lambda: ScopeLimit(100, 60))
    session: ScopeLimit = field(default_factory=lambda: ScopeLimit(50, 60))
    project: ScopeLimit = field(default_factory=lambda: ScopeLimit(1000, 60))
    prune_after_seconds: int = 3600

    def limit_for(self, scope: RateLimitScope) -> ScopeLimit:
        return getattr(self, scope.value)


DEFAULT_CONFIG = RateLimitConfig()


def counter_key(scope: RateLimitScope, identifier: str) -> str:
    return f"ratelimit:{scope.value}:{identifier}"


# --- In-Memory Repository ---


class InMemoryRateLimitRepo:
    """In-memory request log for testing/dev."""

    def __init__(self) -> None:
        self._requests: dict[str, list[datetime]] = defaultdict(list)
        self._violations: list[RateLimitViolation] = []
        self._lock = threading.Lock()

    def count_requests(self, key: str, start: datetime, end: datetime) -> int:
        with self._lock:
            return sum(1 for ts in self._requests.get(key, []) if start <= ts <= end)

    def record_if_below(
        self, key: str, start: datetime, end: datetime, max_requests: int
    ) -> int:
        with self._lock:
            count = sum(1 for ts in self._requests.get(key, []) if start <= ts <= end)
            if count < max_requests:
                self._requests[key].append(end)
            return count

    def prune_requests(self, before: datetime) -> int:
        removed = 0
        with self._lock:
            for key in list(self._requests):
                kept = [ts for ts in self._requests[key] if ts >= before]
                removed += len(self._requests[key]) - len(kept)
                if kept:
                    self._requests[key] = kept
                else:
                    del self._requests[key]
        return removed

    def record_violation(self, violation: RateLimitViolation) -> None:
        with self._lock:
            self._violations.append(violation)

    @property
    def violations(self) -> list[RateLimitViolation]:
        return list(self._violations)


# --- Service ---


class RateLimitService:
    """
    Checks and records requests per (scope, identifier).

    Store failures fail open: the request is allowed and a warning logged.
    """

    def __init__(
        self,
        repo: RateLimitRepoPort,
        time_port: TimePort | None = None,
        config: RateLimitConfig | None = None,
    ) -> None:
        self._repo = repo
        self._time = time_port
        self._config = config or DEFAULT_CONFIG

    def _now(self) -> datetime:
        if self._time:
            return ensure_utc(self._time.now_utc())
        return datetime.now(UTC)

    def check_and_record(self, identifier: str, scope: str) -> RateLimitDecision:
        """Check the limit for one request and record it if allowed."""
        try:
            scope_enum = RateLimitScope(scope)
        except ValueError:
            logger.warning("Unknown rate limit scope %r", scope)
            return RateLimitDecision(identifier=identifier, scope=scope, exceeded=False)

        limit = self._config.limit_for(scope_enum)
        key = counter_key(scope_enum, identifier)
        now = self._now()

        try:
            count = self._repo.record_if_below(
                key, window_start(now, limit.window_seconds), now, limit.max_requests
            )
            if count >= limit.max_requests:
                self._repo.record_violation(
                    RateLimitViolation(
                        scope=scope_enum.value,
                        identifier=identifier,
                        request_count=count,
                        limit=limit.max_requests,
                        window_seconds=limit.window_seconds,
                        occurred_at=now,
                    )
                )
                logger.info(
                    "Rate limit exceeded for %s %s (%d/%d)",
                    scope_enum.value,
                    identifier,
                    count,
                    limit.max_requests,
                )
                return RateLimitDecision(
                    identifier=identifier,
                    scope=scope_enum.value,
                    exceeded=True,
                    request_count=count,
                    limit=limit.max_requests,
                )

            self._repo.prune_requests(
                now - timedelta(seconds=self._config.prune_after_seconds)
            )
        except Exception as e:
            logger.warning(
                "Rate limit store failed for %s %s: %s", scope_enum.value, identifier, e
            )
            return RateLimitDecision(
                identifier=identifier,
                scope=scope_enum.value,
                exceeded=False,
                limit=limit.max_requests,
            )

        return RateLimitDecision(
            identifier=identifier,
            scope=scope_enum.value,
            exceeded=False,
            request_count=count + 1,
            limit=limit.max_requests,
        )

    def is_exceeded(self, identifier: str, scope: str) -> bool:
        return self.check_and_record(identifier, scope).exceeded


def create_rate_limit_service(
    repo: RateLimitRepoPort | None = None,
    time_port: TimePort | None = None,
    config: RateLimitConfig | None = None,
) -> RateLimitService:
    """Factory for the rate limit service."""
    return RateLimitService(
        repo=repo or InMemoryRateLimitRepo(),
        time_port=time_port,
        config=config,
    )
