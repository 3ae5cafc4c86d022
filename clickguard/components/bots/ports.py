"""
Bot detection component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from clickguard.core.entities import Event


class SessionHistoryPort(Protocol):
    """Read access to a session's previously persisted events."""

    def list_session_events(
        self,
        session_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """Session events ordered by timestamp; `limit` keeps the most recent."""
        ...
