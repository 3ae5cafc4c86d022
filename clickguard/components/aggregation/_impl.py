"""
Aggregation pipeline implementation.

Per run: enumerate projects with data in the source window, compute each
project's bucket independently on a worker pool and commit it with a
single upsert. A failing project is logged and reported, the rest carry on.

Supersession: every run takes a generation number for its granularity.
A project whose turn comes after a newer run has started is abandoned;
buckets already committed stay valid because commits are upserts.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from clickguard.core.entities import AggregationBucket
from clickguard.core.timewindows import (
    Granularity,
    bucket_bounds,
    ensure_utc,
    previous_bucket_bounds,
    source_granularity,
)

from ._rollup import (
    SUM_FIELDS,
    compute_hourly_bucket,
    daily_extras,
    growth_rate,
    hourly_distribution,
    rollup_buckets,
)
from .models import CleanupReport, ProjectOutcome, ProjectState, RunReport, ScheduledRunOutput
from .ports import (
    BucketRepoPort,
    CachePurgePort,
    EventSourcePort,
    SessionSourcePort,
    TimePort,
)

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class AggregationConfig:
    """Aggregation configuration."""

    top_n_hourly: int = 10
    top_n_daily: int = 20
    retention_days: int = 90
    max_workers: int = 4

    # Event counters (score >= threshold)
    suspicious_score: int = 60
    blocked_score: int = 80

    def top_n(self, granularity: Granularity) -> int:
        return self.top_n_hourly if granularity == Granularity.HOURLY else self.top_n_daily


DEFAULT_CONFIG = AggregationConfig()

NUMERIC_METRICS: frozenset[str] = frozenset(SUM_FIELDS) | {
    "unique_countries",
    "unique_cities",
    "avg_session_duration",
    "avg_pages_per_session",
    "bounce_rate",
    "avg_fraud_score",
    "avg_response_time",
    "avg_page_load_time",
    "daily_average_events",
    "daily_average_visitors",
    "revenue",
    "conversion_rate",
}

CRON_SCHEDULE: dict[str, Granularity] = {
    "0 * * * *": Granularity.HOURLY,
    "0 0 * * *": Granularity.DAILY,
    "0 0 * * 0": Granularity.WEEKLY,
    "0 0 1 * *": Granularity.MONTHLY,
}


def granularity_for_cron(cron: str) -> Granularity:
    """Map a schedule expression to its granularity; unknown schedules run hourly."""
    granularity = CRON_SCHEDULE.get(cron.strip())
    if granularity is None:
        logger.warning("Unknown aggregation schedule %r, running hourly", cron)
        return Granularity.HOURLY
    return granularity


# --- In-Memory Repository ---


class InMemoryBucketRepo:
    """In-memory bucket store for testing/dev."""

    def __init__(self) -> None:
        self._buckets: dict[tuple[str, str, datetime], AggregationBucket] = {}
        self._lock = threading.Lock()

    def upsert(self, bucket: AggregationBucket) -> AggregationBucket:
        key = (bucket.project_id, bucket.granularity, ensure_utc(bucket.bucket_start))
        with self._lock:
            self._buckets[key] = bucket
        return bucket

    def get(
        self,
        project_id: str,
        granularity: str,
        bucket_start: datetime,
    ) -> AggregationBucket | None:
        with self._lock:
            return self._buckets.get((project_id, granularity, ensure_utc(bucket_start)))

    def list_buckets(
        self,
        project_id: str,
        granularity: str,
        start: datetime,
        end: datetime,
    ) -> list[AggregationBucket]:
        with self._lock:
            rows = [
                b
                for (pid, g, bs), b in self._buckets.items()
                if pid == project_id and g == granularity and start <= bs < end
            ]
        return sorted(rows, key=lambda b: ensure_utc(b.bucket_start))

    def distinct_projects(self, granularity: str, start: datetime, end: datetime) -> list[str]:
        with self._lock:
            return sorted(
                {
                    pid
                    for (pid, g, bs) in self._buckets
                    if g == granularity and start <= bs < end
                }
            )

    def count(self) -> int:
        with self._lock:
            return len(self._buckets)


# --- Pipeline ---


class AggregationPipeline:
    """Hierarchical hourly -> daily -> weekly/monthly roll-up."""

    def __init__(
        self,
        events: EventSourcePort,
        buckets: BucketRepoPort,
        sessions: SessionSourcePort | None = None,
        caches: list[CachePurgePort] | None = None,
        time_port: TimePort | None = None,
        config: AggregationConfig | None = None,
    ) -> None:
        self._events = events
        self._buckets = buckets
        self._sessions = sessions
        self._caches = caches or []
        self._time = time_port
        self._config = config or DEFAULT_CONFIG
        self._generations: dict[Granularity, int] = defaultdict(int)
        self._states: dict[tuple[Granularity, str], ProjectState] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> AggregationConfig:
        return self._config

    def _now(self) -> datetime:
        if self._time:
            return ensure_utc(self._time.now_utc())
        return datetime.now(UTC)

    # --- Supersession ---

    def begin_run(self, granularity: Granularity | str) -> int:
        """Start a new run for a granularity, superseding any older one."""
        g = Granularity(granularity)
        with self._lock:
            self._generations[g] += 1
            return self._generations[g]

    def is_superseded(self, granularity: Granularity, generation: int) -> bool:
        with self._lock:
            return self._generations[granularity] != generation

    # --- Computation ---

    def projects_for(self, granularity: Granularity, start: datetime, end: datetime) -> list[str]:
        """Projects with data in the source window of a bucket."""
        source = source_granularity(granularity)
        if source is None:
            return self._events.distinct_projects(start, end)
        return self._buckets.distinct_projects(source.value, start, end)

    def compute_bucket(
        self,
        granularity: Granularity | str,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> AggregationBucket:
        """Compute one bucket without committing it."""
        g = Granularity(granularity)
        now = self._now()
        source = source_granularity(g)

        if source is None:
            events = self._events.list_events(start, end, project_id)
            sessions = (
                self._sessions.list_started(project_id, start, end) if self._sessions else []
            )
            return compute_hourly_bucket(
                project_id,
                start,
                end,
                events,
                sessions,
                top_n=self._config.top_n_hourly,
                suspicious_score=self._config.suspicious_score,
                blocked_score=self._config.blocked_score,
                computed_at=now,
            )

        children = self._buckets.list_buckets(project_id, source.value, start, end)
        bucket = rollup_buckets(
            project_id,
            g,
            start,
            end,
            children,
            top_n=self._config.top_n(g),
            computed_at=now,
        )

        if g == Granularity.DAILY:
            return bucket.model_copy(
                update={"hourly_distribution": hourly_distribution(start, children)}
            )
        bucket = bucket.model_copy(update=daily_extras(children))
        if g == Granularity.WEEKLY:
            previous = self._buckets.list_buckets(
                project_id, Granularity.DAILY.value, start - timedelta(days=7), start
            )
            return bucket.model_copy(
                update={
                    "growth_rate": growth_rate(
                        bucket.total_events, sum(b.total_events for b in previous)
                    )
                }
            )
        return bucket

    def _run_project(
        self,
        granularity: Granularity,
        generation: int,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> ProjectOutcome:
        if self.is_superseded(granularity, generation):
            return self._finish(granularity, ProjectOutcome(project_id, ProjectState.ABANDONED))

        self._set_state(granularity, project_id, ProjectState.COMPUTING)
        try:
            bucket = self.compute_bucket(granularity, project_id, start, end)
            self._buckets.upsert(bucket)
        except Exception as e:
            logger.exception(
                "Aggregation failed for project=%s granularity=%s bucket_start=%s",
                project_id,
                granularity.value,
                start.isoformat(),
            )
            return self._finish(
                granularity, ProjectOutcome(project_id, ProjectState.FAILED, error=str(e))
            )

        return self._finish(granularity, ProjectOutcome(project_id, ProjectState.COMMITTED))

    def _set_state(self, granularity: Granularity, project_id: str, state: ProjectState) -> None:
        with self._lock:
            self._states[(granularity, project_id)] = state

    def _finish(self, granularity: Granularity, outcome: ProjectOutcome) -> ProjectOutcome:
        self._set_state(granularity, outcome.project_id, outcome.state)
        return outcome

    def state_of(self, granularity: Granularity | str, project_id: str) -> ProjectState | None:
        """Latest known state of a project for a granularity."""
        with self._lock:
            return self._states.get((Granularity(granularity), project_id))

    # --- Runs ---

    def run(self, granularity: Granularity | str, at: datetime) -> RunReport:
        """
        Aggregate the bucket of `granularity` containing `at`.

        Raises ValueError for an unknown granularity.
        """
        g = Granularity(granularity)
        start, end = bucket_bounds(g, at)
        generation = self.begin_run(g)
        try:
            projects = self.projects_for(g, start, end)
        except Exception as e:
            logger.exception(
                "Could not list projects for %s aggregation at %s",
                g.value,
                start.isoformat(),
            )
            return RunReport(
                granularity=g,
                bucket_start=start,
                bucket_end=end,
                generation=generation,
                error=str(e),
            )

        for pid in projects:
            self._set_state(g, pid, ProjectState.PENDING)
        outcomes: list[ProjectOutcome] = []
        if projects:
            workers = max(1, min(self._config.max_workers, len(projects)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [
                    pool.submit(self._run_project, g, generation, pid, start, end)
                    for pid in projects
                ]
                for future in futures:
                    outcomes.append(future.result())

        report = RunReport(
            granularity=g,
            bucket_start=start,
            bucket_end=end,
            generation=generation,
            outcomes=outcomes,
        )
        logger.info(
            "%s aggregation for %s: %d committed, %d failed, %d abandoned",
            g.value,
            start.isoformat(),
            len(report.committed),
            len(report.failed),
            len(report.abandoned),
        )
        return report

    def run_previous(self, granularity: Granularity | str, now: datetime | None = None) -> RunReport:
        """Aggregate the last complete bucket before `now`."""
        start, _ = previous_bucket_bounds(granularity, now or self._now())
        return self.run(granularity, start)

    def run_scheduled(self, cron: str, now: datetime | None = None) -> ScheduledRunOutput:
        """Scheduled entry point: one run, then retention cleanup."""
        now = ensure_utc(now) if now else self._now()
        report = self.run_previous(granularity_for_cron(cron), now)
        cleanup = self.cleanup(now)
        return ScheduledRunOutput(cron=cron, report=report, cleanup=cleanup)

    # --- Retention ---

    def cleanup(self, now: datetime | None = None) -> CleanupReport:
        """
        Delete raw events and sessions past retention and expired cache entries.

        Buckets are never pruned.
        """
        now = ensure_utc(now) if now else self._now()
        cutoff = now - timedelta(days=self._config.retention_days)

        failures: list[str] = []

        events_deleted = 0
        try:
            events_deleted = self._events.delete_before(cutoff)
        except Exception:
            logger.exception("Retention cleanup failed for events before %s", cutoff.isoformat())
            failures.append("events")

        sessions_deleted = 0
        if self._sessions is not None:
            try:
                sessions_deleted = self._sessions.delete_before(cutoff)
            except Exception:
                logger.exception(
                    "Retention cleanup failed for sessions before %s", cutoff.isoformat()
                )
                failures.append("sessions")

        purged = 0
        for cache in self._caches:
            try:
                purged += cache.purge_expired(now)
            except Exception as e:
                logger.warning("Cache purge failed: %s", e)
                if "cache" not in failures:
                    failures.append("cache")

        logger.info(
            "Retention cleanup before %s: %d events, %d sessions, %d cache entries, failed: %s",
            cutoff.isoformat(),
            events_deleted,
            sessions_deleted,
            purged,
            ", ".join(failures) or "none",
        )
        return CleanupReport(
            cutoff=cutoff,
            events_deleted=events_deleted,
            sessions_deleted=sessions_deleted,
            cache_entries_purged=purged,
            failures=failures,
        )

    # --- Queries ---

    def query_buckets(
        self,
        project_id: str,
        granularity: Granularity | str,
        start: datetime,
        end: datetime,
    ) -> list[AggregationBucket]:
        """Buckets of a project in [start, end), sorted by time."""
        g = Granularity(granularity)
        return self._buckets.list_buckets(project_id, g.value, ensure_utc(start), ensure_utc(end))

    def get_totals(
        self,
        project_id: str,
        granularity: Granularity | str,
        start: datetime,
        end: datetime,
    ) -> dict[str, Any]:
        """Summed counters over a range of buckets."""
        buckets = self.query_buckets(project_id, granularity, start, end)
        total_events = sum(b.total_events for b in buckets)
        unique_visitors = sum(b.unique_visitors for b in buckets)
        conversions = sum(b.conversions for b in buckets)
        return {
            "buckets": len(buckets),
            "total_events": total_events,
            "unique_visitors": unique_visitors,
            "page_views": sum(b.page_views for b in buckets),
            "clicks": sum(b.clicks for b in buckets),
            "bot_events": sum(b.bot_events for b in buckets),
            "suspicious_events": sum(b.suspicious_events for b in buckets),
            "blocked_events": sum(b.blocked_events for b in buckets),
            "conversions": conversions,
            "revenue": round(sum(b.revenue for b in buckets), 2),
            "conversion_rate": (
                round(conversions / unique_visitors * 100, 2) if unique_visitors else 0.0
            ),
        }

    def get_time_series(
        self,
        project_id: str,
        granularity: Granularity | str,
        start: datetime,
        end: datetime,
        metric: str = "total_events",
    ) -> list[dict[str, Any]]:
        """
        Chart points for one numeric bucket field.

        Raises ValueError for a field that is not a numeric counter.
        """
        if metric not in NUMERIC_METRICS:
            raise ValueError(f"Unknown metric: {metric}")
        return [
            {"timestamp": b.bucket_start, "value": getattr(b, metric)}
            for b in self.query_buckets(project_id, granularity, start, end)
        ]


def create_aggregation_pipeline(
    events: EventSourcePort | None = None,
    buckets: BucketRepoPort | None = None,
    sessions: SessionSourcePort | None = None,
    caches: list[CachePurgePort] | None = None,
    time_port: TimePort | None = None,
    config: AggregationConfig | None = None,
) -> AggregationPipeline:
    """Factory for the aggregation pipeline; missing stores default to in-memory ones."""
    from clickguard.adapters.memory_db import InMemoryEventRepo, InMemorySessionRepo

    return AggregationPipeline(
        events=events if events is not None else InMemoryEventRepo(),
        buckets=buckets or InMemoryBucketRepo(),
        sessions=sessions if sessions is not None else InMemorySessionRepo(),
        caches=caches,
        time_port=time_port,
        config=config,
    )
