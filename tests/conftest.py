from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from clickguard.adapters.sqlite.migrator import SQLiteMigrator
from clickguard.rules.loader import load_rules
from clickguard.rules.models import Rules

PROJECT_ROOT = Path(__file__).parent.parent
MIGRATIONS_DIR = PROJECT_ROOT / "migrations"

# Wednesday; its week started Sunday 2026-03-01
NOW = datetime(2026, 3, 4, 14, 30, tzinfo=UTC)


class FakeTimePort:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self._now = now

    def now_utc(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeTimePort:
    return FakeTimePort(NOW)


@pytest.fixture
def rules() -> Rules:
    """The real rules.yaml from the project root."""
    return load_rules(PROJECT_ROOT / "rules.yaml")


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Fresh SQLite database with all migrations applied."""
    path = str(tmp_path / "clickguard.db")
    SQLiteMigrator(path, MIGRATIONS_DIR).run_migrations()
    return path
