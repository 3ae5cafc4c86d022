"""
Fraud component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Protocol

from clickguard.core.entities import Event, FraudReputation

from .models import ReputationUpdate

SessionColumn = Literal["ip_address", "country_code"]


class ReputationRepoPort(Protocol):
    """Per-IP fraud reputation store."""

    def get(self, ip_address: str) -> FraudReputation | None:
        """Get the reputation for an IP, or None if unseen."""
        ...

    def upsert(self, reputation: FraudReputation) -> FraudReputation:
        """Insert or replace the reputation row for its IP."""
        ...

    def record(self, update: ReputationUpdate) -> FraudReputation:
        """
        Fold one scoring result into the IP's row in a single atomic step.

        Concurrent calls for the same IP must each be counted.
        """
        ...


class EventHistoryPort(Protocol):
    """Read access to previously persisted events."""

    def list_session_events(
        self,
        session_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """Session events ordered by timestamp; `limit` keeps the most recent."""
        ...

    def count_ip_events(self, ip_address: str, start: datetime, end: datetime) -> int:
        """Count events from an IP with start <= timestamp <= end."""
        ...

    def distinct_session_values(
        self, session_id: str, column: SessionColumn
    ) -> set[str]:
        """Distinct non-null values of a column across a session's events."""
        ...
