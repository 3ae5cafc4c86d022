"""
Aggregation component - hierarchical time-bucketed roll-ups.

Rolls raw events into hourly buckets, hourly into daily, daily into weekly
and monthly, then prunes raw data past retention.

Invariants:
- I1: Exactly one bucket per (project, granularity, bucket_start); re-runs replace it
- I2: Only the hourly tier reads raw events
- I3: A daily bucket's total_events is the sum of its hourly buckets
- I4: One project's failure never stops the others
- I5: Retention never deletes buckets
"""

from __future__ import annotations

from datetime import datetime

from clickguard.core.timewindows import Granularity, ensure_utc
from clickguard.rules.models import AggregationRules

from ._impl import AggregationConfig, AggregationPipeline
from .models import (
    AggregationError,
    ScheduledRunOutput,
    TriggerAggregationInput,
    TriggerAggregationOutput,
)


def build_aggregation_config(rules: AggregationRules | None) -> AggregationConfig:
    """Build aggregation config from the rules section."""
    if rules is None:
        return AggregationConfig()
    return AggregationConfig(
        top_n_hourly=rules.top_n_hourly,
        top_n_daily=rules.top_n_daily,
        retention_days=rules.retention_days,
        max_workers=rules.max_workers,
        suspicious_score=rules.suspicious_score,
        blocked_score=rules.blocked_score,
    )


def parse_trigger_date(value: datetime | str | None) -> datetime | None:
    """
    Parse a trigger date.

    Accepts a datetime, an ISO-8601 string (date or datetime, "Z" allowed)
    or None. Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported date value: {value!r}")


def run_trigger(
    inp: TriggerAggregationInput,
    *,
    pipeline: AggregationPipeline,
    now: datetime | None = None,
) -> TriggerAggregationOutput:
    """
    Manual or backfill aggregation for any granularity.

    Without a date the last complete bucket is aggregated, as a scheduled
    run would; with a date the bucket containing it is aggregated.

    Args:
        inp: Aggregation type and optional date.
        pipeline: Configured aggregation pipeline.
        now: Optional reference time for the no-date case.

    Returns:
        TriggerAggregationOutput echoing type and resolved date.
    """
    errors: list[AggregationError] = []

    try:
        granularity = Granularity(inp.type)
    except ValueError:
        errors.append(
            AggregationError(
                code="unknown_type",
                message=f"Unknown aggregation type: {inp.type}",
                field_name="type",
            )
        )
        return TriggerAggregationOutput(type=inp.type, errors=errors, success=False)

    try:
        target = parse_trigger_date(inp.date)
    except ValueError as e:
        errors.append(AggregationError(code="invalid_date", message=str(e), field_name="date"))
        return TriggerAggregationOutput(type=inp.type, errors=errors, success=False)

    if target is None:
        report = pipeline.run_previous(granularity, now)
    else:
        report = pipeline.run(granularity, target)

    if report.error is not None:
        errors.append(
            AggregationError(
                code="store_unavailable",
                message=f"Could not list projects: {report.error}",
            )
        )

    for project_id in report.failed:
        errors.append(
            AggregationError(
                code="project_failed",
                message=f"Aggregation failed for project {project_id}",
                field_name="project_id",
            )
        )

    return TriggerAggregationOutput(
        type=granularity.value,
        date=report.bucket_start.isoformat(),
        report=report,
        errors=errors,
        success=len(errors) == 0,
    )


def run_scheduled(
    cron: str,
    *,
    pipeline: AggregationPipeline,
    now: datetime | None = None,
) -> ScheduledRunOutput:
    """
    Scheduled invocation contract.

    Args:
        cron: Schedule expression that fired.
        pipeline: Configured aggregation pipeline.
        now: Optional firing time.

    Returns:
        ScheduledRunOutput with the run report and cleanup counts.
    """
    return pipeline.run_scheduled(cron, now)
