"""
Aggregation component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from clickguard.core.entities import AggregationBucket, Event, SessionRecord


class EventSourcePort(Protocol):
    """Raw events read by the hourly tier and pruned by retention."""

    def list_events(
        self,
        start: datetime,
        end: datetime,
        project_id: str | None = None,
    ) -> list[Event]:
        """Events with start <= timestamp < end."""
        ...

    def distinct_projects(self, start: datetime, end: datetime) -> list[str]:
        """Projects with at least one event in [start, end)."""
        ...

    def delete_before(self, cutoff: datetime) -> int:
        """Delete events older than cutoff. Returns rows removed."""
        ...


class SessionSourcePort(Protocol):
    """Session summaries read by the hourly tier and pruned by retention."""

    def list_started(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> list[SessionRecord]:
        """Sessions of a project that started in [start, end)."""
        ...

    def delete_before(self, cutoff: datetime) -> int:
        """Delete sessions that ended before cutoff."""
        ...


class BucketRepoPort(Protocol):
    """Aggregation bucket persistence."""

    def upsert(self, bucket: AggregationBucket) -> AggregationBucket:
        """Insert or replace the row for (project, granularity, bucket_start)."""
        ...

    def get(
        self,
        project_id: str,
        granularity: str,
        bucket_start: datetime,
    ) -> AggregationBucket | None:
        """Get one bucket."""
        ...

    def list_buckets(
        self,
        project_id: str,
        granularity: str,
        start: datetime,
        end: datetime,
    ) -> list[AggregationBucket]:
        """Buckets with start <= bucket_start < end, ordered by bucket_start."""
        ...

    def distinct_projects(
        self,
        granularity: str,
        start: datetime,
        end: datetime,
    ) -> list[str]:
        """Projects with buckets of a granularity in [start, end)."""
        ...


class CachePurgePort(Protocol):
    """Any cache whose expired entries are swept by retention."""

    def purge_expired(self, now: datetime) -> int:
        """Delete expired entries. Returns entries removed."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
