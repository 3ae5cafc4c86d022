"""
CLI commands against a temporary data directory.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from clickguard.adapters.sqlite_db import SQLiteBucketRepo, SQLiteEventRepo
from clickguard.app_shell.cli import main
from clickguard.core.entities import Event

PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CLICKGUARD_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CLICKGUARD_RULES", str(PROJECT_ROOT / "rules.yaml"))
    monkeypatch.delenv("CLICKGUARD_REDIS_URL", raising=False)
    assert main(["migrate", "--migrations-dir", str(PROJECT_ROOT / "migrations")]) == 0
    return tmp_path


def db_path(data_dir: Path) -> str:
    return str(data_dir / "clickguard.db")


class TestCli:
    def test_migrate_creates_database(self, data_dir: Path) -> None:
        assert (data_dir / "clickguard.db").exists()

    def test_aggregate_backfill(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        SQLiteEventRepo(db_path(data_dir)).insert(
            Event(
                project_id="shop",
                session_id="s1",
                timestamp=datetime(2026, 3, 4, 14, 10, tzinfo=UTC),
            )
        )

        assert main(["aggregate", "hourly", "--date", "2026-03-04T14:00:00Z"]) == 0
        assert "1 committed" in capsys.readouterr().out
        assert SQLiteBucketRepo(db_path(data_dir)).count() == 1

    def test_aggregate_unknown_type_fails(self, data_dir: Path) -> None:
        assert main(["aggregate", "yearly"]) == 1

    def test_cleanup(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        SQLiteEventRepo(db_path(data_dir)).insert(
            Event(project_id="shop", session_id="s1", timestamp=datetime(2000, 1, 1, tzinfo=UTC))
        )

        assert main(["cleanup"]) == 0
        assert "Removed 1 events" in capsys.readouterr().out
        assert SQLiteEventRepo(db_path(data_dir)).count() == 0

    def test_scheduled_daily(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["scheduled", "--cron", "0 0 * * *", "--now", "2026-03-05T00:00:00+00:00"]) == 0
        assert "daily 2026-03-04T00:00:00+00:00" in capsys.readouterr().out

    def test_cleanup_without_tables_exits_nonzero(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Every failed store is reported and the exit code says so."""
        monkeypatch.setenv("CLICKGUARD_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("CLICKGUARD_RULES", str(PROJECT_ROOT / "rules.yaml"))
        monkeypatch.delenv("CLICKGUARD_REDIS_URL", raising=False)

        assert main(["cleanup"]) == 1
        assert "Removed 0 events, 0 sessions" in capsys.readouterr().out
