"""
Aggregation component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from clickguard.core.timewindows import Granularity


class ProjectState(str, Enum):
    """Lifecycle of one project's bucket inside a run."""

    PENDING = "pending"
    COMPUTING = "computing"
    COMMITTED = "committed"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class AggregationError:
    """Aggregation error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class ProjectOutcome:
    """Final state of one project's bucket."""

    project_id: str
    state: ProjectState
    error: str | None = None


@dataclass(frozen=True)
class RunReport:
    """Result of one aggregation run for one bucket span."""

    granularity: Granularity
    bucket_start: datetime
    bucket_end: datetime
    generation: int
    outcomes: list[ProjectOutcome] = field(default_factory=list)
    # Set when the run could not enumerate its projects
    error: str | None = None

    def _with_state(self, state: ProjectState) -> list[str]:
        return sorted(o.project_id for o in self.outcomes if o.state == state)

    @property
    def committed(self) -> list[str]:
        return self._with_state(ProjectState.COMMITTED)

    @property
    def failed(self) -> list[str]:
        return self._with_state(ProjectState.FAILED)

    @property
    def abandoned(self) -> list[str]:
        return self._with_state(ProjectState.ABANDONED)

    @property
    def superseded(self) -> bool:
        return bool(self.abandoned)


@dataclass(frozen=True)
class CleanupReport:
    """Rows removed by one retention pass."""

    cutoff: datetime
    events_deleted: int = 0
    sessions_deleted: int = 0
    cache_entries_purged: int = 0
    # Stores whose cleanup step failed: "events", "sessions", "cache"
    failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class TriggerAggregationInput:
    """Manual/backfill trigger request."""

    type: str
    date: datetime | str | None = None


@dataclass(frozen=True)
class TriggerAggregationOutput:
    """Manual trigger result; echoes the parameters used."""

    type: str
    date: str | None = None
    report: RunReport | None = None
    errors: list[AggregationError] = field(default_factory=list)
    success: bool = False

    @property
    def committed(self) -> list[str]:
        return self.report.committed if self.report else []

    @property
    def failed(self) -> list[str]:
        return self.report.failed if self.report else []

    @property
    def error(self) -> str | None:
        return self.errors[0].message if self.errors else None

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "type": self.type,
            "date": self.date,
            "committed": self.committed,
            "failed": self.failed,
            "abandoned": self.report.abandoned if self.report else [],
            "error": self.error,
        }


@dataclass(frozen=True)
class ScheduledRunOutput:
    """Scheduled dispatch result: one run followed by retention cleanup."""

    cron: str
    report: RunReport
    cleanup: CleanupReport

    @property
    def success(self) -> bool:
        return self.report.error is None and not self.report.failed and self.cleanup.ok
