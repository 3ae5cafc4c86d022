"""
Aggregation component - hierarchical time-bucketed roll-ups.
"""

from ._impl import (
    CRON_SCHEDULE,
    DEFAULT_CONFIG,
    AggregationConfig,
    AggregationPipeline,
    InMemoryBucketRepo,
    create_aggregation_pipeline,
    granularity_for_cron,
)
from ._rollup import (
    compute_hourly_bucket,
    daily_extras,
    growth_rate,
    hourly_distribution,
    merge_top,
    rank_top,
    rollup_buckets,
)
from .component import (
    build_aggregation_config,
    parse_trigger_date,
    run_scheduled,
    run_trigger,
)
from .models import (
    AggregationError,
    CleanupReport,
    ProjectOutcome,
    ProjectState,
    RunReport,
    ScheduledRunOutput,
    TriggerAggregationInput,
    TriggerAggregationOutput,
)
from .ports import (
    BucketRepoPort,
    CachePurgePort,
    EventSourcePort,
    SessionSourcePort,
    TimePort,
)

__all__ = [
    # Entry points
    "build_aggregation_config",
    "parse_trigger_date",
    "run_scheduled",
    "run_trigger",
    # Models
    "AggregationError",
    "CleanupReport",
    "ProjectOutcome",
    "ProjectState",
    "RunReport",
    "ScheduledRunOutput",
    "TriggerAggregationInput",
    "TriggerAggregationOutput",
    # Ports
    "BucketRepoPort",
    "CachePurgePort",
    "EventSourcePort",
    "SessionSourcePort",
    "TimePort",
    # Roll-up
    "compute_hourly_bucket",
    "daily_extras",
    "growth_rate",
    "hourly_distribution",
    "merge_top",
    "rank_top",
    "rollup_buckets",
    # Implementation
    "CRON_SCHEDULE",
    "DEFAULT_CONFIG",
    "AggregationConfig",
    "AggregationPipeline",
    "InMemoryBucketRepo",
    "create_aggregation_pipeline",
    "granularity_for_cron",
]
