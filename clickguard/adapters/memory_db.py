"""
Thread-safe in-memory event and session stores.

Implement the same contracts as the SQLite repositories; used for tests,
local development and as the default when no database is configured.
"""

from __future__ import annotations

import threading
from datetime import datetime

from clickguard.core.entities import Event, SessionRecord
from clickguard.core.timewindows import ensure_utc


class InMemoryEventRepo:
    """In-memory raw event store."""

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lock = threading.Lock()

    def insert(self, event: Event) -> Event:
        with self._lock:
            self._events.append(event)
        return event

    def _snapshot(self) -> list[Event]:
        with self._lock:
            return sorted(self._events, key=lambda e: ensure_utc(e.timestamp))

    def list_session_events(
        self,
        session_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        events = [e for e in self._snapshot() if e.session_id == session_id]
        if since is not None:
            events = [e for e in events if ensure_utc(e.timestamp) >= since]
        if limit is not None:
            events = events[-limit:]
        return events

    def count_ip_events(self, ip_address: str, start: datetime, end: datetime) -> int:
        return sum(
            1
            for e in self._snapshot()
            if e.ip_address == ip_address and start <= ensure_utc(e.timestamp) <= end
        )

    def distinct_session_values(self, session_id: str, column: str) -> set[str]:
        values = (getattr(e, column) for e in self._snapshot() if e.session_id == session_id)
        return {v for v in values if v}

    def list_events(
        self,
        start: datetime,
        end: datetime,
        project_id: str | None = None,
    ) -> list[Event]:
        """Events with start <= timestamp < end."""
        return [
            e
            for e in self._snapshot()
            if start <= ensure_utc(e.timestamp) < end
            and (project_id is None or e.project_id == project_id)
        ]

    def distinct_projects(self, start: datetime, end: datetime) -> list[str]:
        return sorted({e.project_id for e in self.list_events(start, end)})

    def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            kept = [e for e in self._events if ensure_utc(e.timestamp) >= cutoff]
            removed = len(self._events) - len(kept)
            self._events = kept
        return removed

    def count(self) -> int:
        with self._lock:
            return len(self._events)


class InMemorySessionRepo:
    """In-memory session summary store."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            return self._sessions.get(session_id)

    def upsert(self, session: SessionRecord) -> SessionRecord:
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def has_prior_session(
        self,
        project_id: str,
        ip_address: str,
        before: datetime,
    ) -> bool:
        with self._lock:
            return any(
                s.project_id == project_id
                and s.ip_address == ip_address
                and ensure_utc(s.start_time) < before
                for s in self._sessions.values()
            )

    def list_started(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> list[SessionRecord]:
        with self._lock:
            return [
                s
                for s in self._sessions.values()
                if s.project_id == project_id and start <= ensure_utc(s.start_time) < end
            ]

    def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [
                sid for sid, s in self._sessions.items() if ensure_utc(s.end_time) < cutoff
            ]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)
