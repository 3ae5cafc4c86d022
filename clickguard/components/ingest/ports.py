"""
Ingest component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from clickguard.core.entities import Event, SessionRecord


class EventWriterPort(Protocol):
    """Raw event persistence."""

    def insert(self, event: Event) -> Event:
        """Persist an event."""
        ...


class SessionRepoPort(Protocol):
    """Session summary persistence."""

    def get(self, session_id: str) -> SessionRecord | None:
        """Get a session summary."""
        ...

    def upsert(self, session: SessionRecord) -> SessionRecord:
        """Insert or replace a session summary."""
        ...

    def has_prior_session(
        self,
        project_id: str,
        ip_address: str,
        before: datetime,
    ) -> bool:
        """True if the same visitor started a session in the project earlier."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
