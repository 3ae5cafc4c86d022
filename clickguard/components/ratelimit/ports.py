"""
Rate limit component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from clickguard.core.entities import RateLimitViolation


class RateLimitRepoPort(Protocol):
    """Store of request timestamps per counter key."""

    def record_if_below(
        self, key: str, start: datetime, end: datetime, max_requests: int
    ) -> int:
        """
        Atomically count requests in [start, end] and, if the count is below
        `max_requests`, record one at `end`. Returns the count before recording.
        """
        ...

    def prune_requests(self, before: datetime) -> int:
        """Delete request timestamps older than `before`. Returns count."""
        ...

    def record_violation(self, violation: RateLimitViolation) -> None:
        """Persist a violation."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
