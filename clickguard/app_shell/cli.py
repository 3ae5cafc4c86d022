import argparse
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from clickguard.adapters.clock import SystemClock
from clickguard.adapters.redis_cache import RedisGeoCache
from clickguard.adapters.sqlite.migrator import SQLiteMigrator
from clickguard.adapters.sqlite_db import (
    SQLiteBucketRepo,
    SQLiteEventRepo,
    SQLiteGeoCache,
    SQLiteSessionRepo,
)
from clickguard.app_shell.config import ConfigurationError, validate_ops_rules
from clickguard.components.aggregation import (
    AggregationPipeline,
    TriggerAggregationInput,
    build_aggregation_config,
    run_scheduled,
    run_trigger,
)
from clickguard.components.geo.ports import GeoCachePort
from clickguard.rules.loader import load_rules

logger = logging.getLogger("cli")

MIGRATIONS_DIR = "migrations"


@dataclass(frozen=True)
class CliContext:
    db_path: str
    data_dir: Path
    rules_path: Path
    redis_url: str | None


def get_context() -> CliContext:
    data_dir = Path(os.environ.get("CLICKGUARD_DATA_DIR", "./data"))
    return CliContext(
        db_path=str(data_dir / "clickguard.db"),
        data_dir=data_dir,
        rules_path=Path(os.environ.get("CLICKGUARD_RULES", "rules.yaml")),
        redis_url=os.environ.get("CLICKGUARD_REDIS_URL") or None,
    )


def build_pipeline(ctx: CliContext) -> AggregationPipeline:
    if not ctx.rules_path.exists():
        logger.error("Rules file %s not found.", ctx.rules_path)
        sys.exit(1)

    rules = load_rules(ctx.rules_path)
    try:
        validate_ops_rules(rules, ctx.data_dir)
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)

    cache: GeoCachePort
    if ctx.redis_url:
        cache = RedisGeoCache.from_url(ctx.redis_url)
    else:
        cache = SQLiteGeoCache(ctx.db_path)

    return AggregationPipeline(
        events=SQLiteEventRepo(ctx.db_path),
        buckets=SQLiteBucketRepo(ctx.db_path),
        sessions=SQLiteSessionRepo(ctx.db_path),
        caches=[cache],
        time_port=SystemClock(),
        config=build_aggregation_config(rules.aggregation),
    )


def handle_migrate(ctx: CliContext, args: argparse.Namespace) -> int:
    ctx.data_dir.mkdir(parents=True, exist_ok=True)
    applied = SQLiteMigrator(ctx.db_path, args.migrations_dir).run_migrations()
    print(f"Applied {len(applied)} migration(s).")
    return 0


def handle_aggregate(ctx: CliContext, args: argparse.Namespace) -> int:
    pipeline = build_pipeline(ctx)
    out = run_trigger(TriggerAggregationInput(type=args.granularity, date=args.date), pipeline=pipeline)
    if not out.success:
        logger.error("Aggregation failed: %s", out.error)
    print(
        f"{out.type} {out.date}: {len(out.committed)} committed, "
        f"{len(out.failed)} failed"
    )
    return 0 if out.success else 1


def handle_cleanup(ctx: CliContext, args: argparse.Namespace) -> int:
    report = build_pipeline(ctx).cleanup()
    print(
        f"Removed {report.events_deleted} events, {report.sessions_deleted} sessions, "
        f"{report.cache_entries_purged} cache entries older than {report.cutoff.isoformat()}."
    )
    if not report.ok:
        logger.error("Cleanup failed for: %s", ", ".join(report.failures))
        return 1
    return 0


def handle_scheduled(ctx: CliContext, args: argparse.Namespace) -> int:
    now = datetime.fromisoformat(args.now) if args.now else None
    out = run_scheduled(args.cron, pipeline=build_pipeline(ctx), now=now)
    print(
        f"{out.report.granularity.value} {out.report.bucket_start.isoformat()}: "
        f"{len(out.report.committed)} committed, {len(out.report.failed)} failed; "
        f"cleanup removed {out.cleanup.events_deleted} events"
    )
    if out.report.error is not None:
        logger.error("Aggregation could not list projects: %s", out.report.error)
    if not out.cleanup.ok:
        logger.error("Cleanup failed for: %s", ", ".join(out.cleanup.failures))
    return 0 if out.success else 1


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="clickguard CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Apply database migrations")
    migrate_parser.add_argument("--migrations-dir", default=MIGRATIONS_DIR)

    # aggregate
    aggregate_parser = subparsers.add_parser("aggregate", help="Aggregate one bucket")
    aggregate_parser.add_argument("granularity", help="hourly, daily, weekly or monthly")
    aggregate_parser.add_argument(
        "--date", help="ISO date inside the bucket (default: last complete bucket)"
    )

    # cleanup
    subparsers.add_parser("cleanup", help="Delete raw data past retention")

    # scheduled
    scheduled_parser = subparsers.add_parser("scheduled", help="Cron entry point")
    scheduled_parser.add_argument("--cron", required=True, help="Cron expression that fired")
    scheduled_parser.add_argument("--now", help="Override the firing time (ISO)")

    args = parser.parse_args(argv)
    ctx = get_context()

    handlers = {
        "migrate": handle_migrate,
        "aggregate": handle_aggregate,
        "cleanup": handle_cleanup,
        "scheduled": handle_scheduled,
    }
    return handlers[args.command](ctx, args)


if __name__ == "__main__":
    sys.exit(main())
