"""
Geo component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol


class GeoCachePort(Protocol):
    """TTL-capable key/value cache for resolved geo records."""

    def get(self, key: str) -> dict[str, Any] | None:
        """Get an unexpired value, or None."""
        ...

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        """Store a value that expires after ttl_seconds."""
        ...

    def purge_expired(self, now: datetime) -> int:
        """Delete entries past their expiry. Returns count deleted."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
