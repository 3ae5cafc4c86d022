import os
from functools import lru_cache
from pathlib import Path

from fastapi import Depends

from clickguard.adapters.clock import SystemClock
from clickguard.adapters.redis_cache import RedisGeoCache
from clickguard.adapters.sqlite_db import (
    SQLiteBucketRepo,
    SQLiteEventRepo,
    SQLiteGeoCache,
    SQLiteRateLimitRepo,
    SQLiteReputationRepo,
    SQLiteSessionRepo,
)
from clickguard.components.aggregation import (
    AggregationPipeline,
    build_aggregation_config,
)
from clickguard.components.geo.ports import GeoCachePort
from clickguard.components.ingest import IngestionPipeline, build_ingestion_pipeline
from clickguard.rules.loader import load_rules
from clickguard.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("CLICKGUARD_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "clickguard.db")
        self.rules_path = Path(os.environ.get("CLICKGUARD_RULES", self.base_dir / "rules.yaml"))
        self.migrations_dir = self.base_dir / "migrations"
        self.redis_url = os.environ.get("CLICKGUARD_REDIS_URL") or None


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules() -> Rules:
    return load_rules(get_settings().rules_path)


# --- Repos ---
def get_event_repo(settings: Settings = Depends(get_settings)) -> SQLiteEventRepo:
    return SQLiteEventRepo(settings.db_path)


def get_session_repo(settings: Settings = Depends(get_settings)) -> SQLiteSessionRepo:
    return SQLiteSessionRepo(settings.db_path)


def get_bucket_repo(settings: Settings = Depends(get_settings)) -> SQLiteBucketRepo:
    return SQLiteBucketRepo(settings.db_path)


@lru_cache
def get_geo_cache() -> GeoCachePort:
    """Redis when configured, otherwise the SQLite geo_cache table."""
    settings = get_settings()
    if settings.redis_url:
        return RedisGeoCache.from_url(settings.redis_url)
    return SQLiteGeoCache(settings.db_path)


# --- Component Services ---
def get_ingestion_pipeline(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
    geo_cache: GeoCachePort = Depends(get_geo_cache),
) -> IngestionPipeline:
    """Ingestion pipeline over the SQLite stores."""
    return build_ingestion_pipeline(
        rules,
        geo_cache=geo_cache,
        rate_limit_repo=SQLiteRateLimitRepo(settings.db_path),
        reputations=SQLiteReputationRepo(settings.db_path),
        history=SQLiteEventRepo(settings.db_path),
        time_port=SystemClock(),
    )


@lru_cache
def get_aggregation_pipeline() -> AggregationPipeline:
    """
    Process-wide aggregation pipeline.

    Shared so that a newer trigger supersedes an older one still running.
    """
    settings = get_settings()
    return AggregationPipeline(
        events=SQLiteEventRepo(settings.db_path),
        buckets=SQLiteBucketRepo(settings.db_path),
        sessions=SQLiteSessionRepo(settings.db_path),
        caches=[get_geo_cache()],
        time_port=SystemClock(),
        config=build_aggregation_config(get_rules().aggregation),
    )
