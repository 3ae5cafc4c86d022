"""
SQLite repository contract tests.

Each repo is exercised against a freshly migrated database and must behave
like its in-memory counterpart.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta, timezone
from uuid import UUID

import pytest

from clickguard.adapters.sqlite_db import (
    SQLiteBucketRepo,
    SQLiteEventRepo,
    SQLiteGeoCache,
    SQLiteRateLimitRepo,
    SQLiteReputationRepo,
    SQLiteSessionRepo,
    SQLiteUnitOfWork,
)
from clickguard.components.fraud import FraudScorer, ReputationUpdate
from clickguard.core.entities import (
    AggregationBucket,
    Event,
    FraudReputation,
    RateLimitViolation,
    SessionRecord,
    TopItem,
)

T0 = datetime(2026, 3, 4, 14, 0, tzinfo=UTC)


def make_event(minutes: float = 0, **overrides: object) -> Event:
    data: dict[str, object] = {
        "project_id": "shop",
        "session_id": "s1",
        "ip_address": "203.0.113.7",
        "timestamp": T0 + timedelta(minutes=minutes),
    }
    data.update(overrides)
    return Event(**data)


# --- Events ---


class TestSQLiteEventRepo:
    @pytest.fixture
    def repo(self, db_path: str) -> SQLiteEventRepo:
        return SQLiteEventRepo(db_path)

    def test_round_trip_preserves_fields(self, repo: SQLiteEventRepo) -> None:
        event = make_event(
            event_type="conversion",
            conversion_value=19.99,
            custom_params={"plan": "pro", "seats": 3},
            is_bot=True,
            fraud_score=72,
            threat_level="high",
            screen_width=1920,
        )
        repo.insert(event)

        [stored] = repo.list_events(T0, T0 + timedelta(hours=1))
        assert stored == event
        assert isinstance(stored.id, UUID)
        assert stored.timestamp.tzinfo is not None
        assert stored.custom_params == {"plan": "pro", "seats": 3}
        assert stored.is_bot is True
        assert stored.rate_limited is False

    def test_list_events_is_half_open(self, repo: SQLiteEventRepo) -> None:
        for minutes in (0, 30, 60):
            repo.insert(make_event(minutes))
        events = repo.list_events(T0, T0 + timedelta(hours=1))
        assert [e.timestamp for e in events] == [T0, T0 + timedelta(minutes=30)]

    def test_list_events_filters_project(self, repo: SQLiteEventRepo) -> None:
        repo.insert(make_event(1, project_id="a"))
        repo.insert(make_event(2, project_id="b"))
        events = repo.list_events(T0, T0 + timedelta(hours=1), project_id="b")
        assert [e.project_id for e in events] == ["b"]

    def test_offset_timestamps_are_normalised(self, repo: SQLiteEventRepo) -> None:
        """16:30+02:00 is stored and found as 14:30 UTC."""
        plus_two = timezone(timedelta(hours=2))
        repo.insert(make_event(timestamp=datetime(2026, 3, 4, 16, 30, tzinfo=plus_two)))
        [stored] = repo.list_events(T0, T0 + timedelta(hours=1))
        assert stored.timestamp == T0 + timedelta(minutes=30)

    def test_list_session_events_since_and_limit(self, repo: SQLiteEventRepo) -> None:
        for minutes in (3, 1, 2, 4):
            repo.insert(make_event(minutes))
        repo.insert(make_event(5, session_id="other"))

        all_events = repo.list_session_events("s1")
        assert [e.timestamp.minute for e in all_events] == [1, 2, 3, 4]

        since = repo.list_session_events("s1", since=T0 + timedelta(minutes=2))
        assert [e.timestamp.minute for e in since] == [2, 3, 4]

        latest = repo.list_session_events("s1", limit=2)
        assert [e.timestamp.minute for e in latest] == [3, 4]

    def test_count_ip_events_is_inclusive(self, repo: SQLiteEventRepo) -> None:
        for minutes in (0, 5, 10):
            repo.insert(make_event(minutes))
        repo.insert(make_event(5, ip_address="198.51.100.1"))
        assert repo.count_ip_events("203.0.113.7", T0, T0 + timedelta(minutes=10)) == 3
        assert repo.count_ip_events("203.0.113.7", T0 + timedelta(minutes=1), T0 + timedelta(minutes=9)) == 1

    def test_distinct_session_values(self, repo: SQLiteEventRepo) -> None:
        repo.insert(make_event(0, country_code="DE"))
        repo.insert(make_event(1, country_code="FR"))
        repo.insert(make_event(2, country_code="DE", ip_address=None))
        assert repo.distinct_session_values("s1", "country_code") == {"DE", "FR"}
        assert repo.distinct_session_values("s1", "ip_address") == {"203.0.113.7"}

    def test_distinct_session_values_rejects_other_columns(self, repo: SQLiteEventRepo) -> None:
        with pytest.raises(ValueError):
            repo.distinct_session_values("s1", "user_agent; DROP TABLE events")

    def test_distinct_projects_and_delete_before(self, repo: SQLiteEventRepo) -> None:
        repo.insert(make_event(0, project_id="b"))
        repo.insert(make_event(10, project_id="a"))
        repo.insert(make_event(120, project_id="c"))
        assert repo.distinct_projects(T0, T0 + timedelta(hours=1)) == ["a", "b"]

        assert repo.delete_before(T0 + timedelta(minutes=10)) == 1
        assert repo.count() == 2


# --- Sessions ---


class TestSQLiteSessionRepo:
    @pytest.fixture
    def repo(self, db_path: str) -> SQLiteSessionRepo:
        return SQLiteSessionRepo(db_path)

    def make_session(self, session_id: str = "s1", **overrides: object) -> SessionRecord:
        data: dict[str, object] = {
            "session_id": session_id,
            "project_id": "shop",
            "ip_address": "203.0.113.7",
            "start_time": T0,
            "end_time": T0 + timedelta(minutes=5),
            "page_views": 2,
            "events_count": 3,
            "entry_referrer_type": "search",
        }
        data.update(overrides)
        return SessionRecord(**data)

    def test_upsert_then_update(self, repo: SQLiteSessionRepo) -> None:
        repo.upsert(self.make_session())
        repo.upsert(self.make_session(end_time=T0 + timedelta(minutes=9), page_views=4))

        stored = repo.get("s1")
        assert stored is not None
        assert stored.page_views == 4
        assert stored.duration_seconds == 540
        assert stored.entry_referrer_type == "search"
        assert repo.get("missing") is None

    def test_has_prior_session(self, repo: SQLiteSessionRepo) -> None:
        repo.upsert(self.make_session())
        later = T0 + timedelta(days=1)
        assert repo.has_prior_session("shop", "203.0.113.7", later)
        assert not repo.has_prior_session("shop", "203.0.113.7", T0)
        assert not repo.has_prior_session("other", "203.0.113.7", later)

    def test_list_started_and_delete_before(self, repo: SQLiteSessionRepo) -> None:
        repo.upsert(self.make_session("early"))
        repo.upsert(
            self.make_session(
                "late",
                start_time=T0 + timedelta(hours=2),
                end_time=T0 + timedelta(hours=2, minutes=1),
            )
        )
        started = repo.list_started("shop", T0, T0 + timedelta(hours=1))
        assert [s.session_id for s in started] == ["early"]

        assert repo.delete_before(T0 + timedelta(hours=1)) == 1
        assert repo.get("early") is None
        assert repo.get("late") is not None


# --- Reputation ---


class TestSQLiteReputationRepo:
    def test_upsert_round_trip(self, db_path: str) -> None:
        repo = SQLiteReputationRepo(db_path)
        assert repo.get("203.0.113.7") is None

        repo.upsert(FraudReputation(ip_address="203.0.113.7", total_events=1, last_updated=T0))
        repo.upsert(
            FraudReputation(
                ip_address="203.0.113.7",
                vpn_detected=True,
                total_events=2,
                suspicious_events=1,
                last_updated=T0 + timedelta(minutes=1),
            )
        )

        stored = repo.get("203.0.113.7")
        assert stored is not None
        assert stored.total_events == 2
        assert stored.vpn_detected is True
        assert stored.suspicious_events == 1
        assert stored.last_updated == T0 + timedelta(minutes=1)

    def test_record_increments_and_ors_flags(self, db_path: str) -> None:
        repo = SQLiteReputationRepo(db_path)
        repo.record(
            ReputationUpdate(
                ip_address="203.0.113.7",
                base_score=85,
                observed_at=T0,
                suspicious=True,
                blocked=True,
                tor=True,
            )
        )
        stored = repo.record(
            ReputationUpdate(
                ip_address="203.0.113.7",
                base_score=25,
                observed_at=T0 + timedelta(minutes=1),
                vpn=True,
            )
        )

        assert stored.total_events == 2
        assert stored.suspicious_events == 1
        assert stored.blocked_events == 1
        assert stored.tor_detected is True
        assert stored.vpn_detected is True
        assert stored.base_score == 25
        assert stored.last_updated == T0 + timedelta(minutes=1)

    def test_concurrent_scorers_count_every_event(self, db_path: str) -> None:
        """Each thread has its own scorer and connection; no update is lost."""
        barrier = threading.Barrier(4)

        def worker() -> None:
            scorer = FraudScorer(
                reputations=SQLiteReputationRepo(db_path),
                history=SQLiteEventRepo(db_path),
            )
            barrier.wait()
            scorer.score(make_event())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stored = SQLiteReputationRepo(db_path).get("203.0.113.7")
        assert stored is not None
        assert stored.total_events == 4


# --- Rate limits ---


class TestSQLiteRateLimitRepo:
    def test_count_record_prune(self, db_path: str) -> None:
        repo = SQLiteRateLimitRepo(db_path)
        for seconds in (0, 30, 60):
            repo.record_request("ip:203.0.113.7", T0 + timedelta(seconds=seconds))
        repo.record_request("session:s1", T0)

        assert repo.count_requests("ip:203.0.113.7", T0, T0 + timedelta(seconds=60)) == 3
        assert repo.prune_requests(T0 + timedelta(seconds=30)) == 2
        assert repo.count_requests("ip:203.0.113.7", T0, T0 + timedelta(seconds=60)) == 2

    def test_record_if_below_is_atomic_across_connections(self, db_path: str) -> None:
        barrier = threading.Barrier(8)
        counts: list[int] = []

        def worker() -> None:
            repo = SQLiteRateLimitRepo(db_path)
            barrier.wait()
            counts.append(
                repo.record_if_below("ip:203.0.113.7", T0 - timedelta(seconds=60), T0, 3)
            )

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(counts) == [0, 1, 2, 3, 3, 3, 3, 3]
        repo = SQLiteRateLimitRepo(db_path)
        assert repo.count_requests("ip:203.0.113.7", T0 - timedelta(seconds=60), T0) == 3

    def test_record_violation(self, db_path: str) -> None:
        repo = SQLiteRateLimitRepo(db_path)
        repo.record_violation(
            RateLimitViolation(
                scope="ip",
                identifier="203.0.113.7",
                request_count=101,
                limit=100,
                window_seconds=60,
                occurred_at=T0,
            )
        )
        [violation] = repo.violations()
        assert violation.limit == 100
        assert violation.occurred_at == T0


# --- Buckets ---


class TestSQLiteBucketRepo:
    def make_bucket(self, start: datetime = T0, **overrides: object) -> AggregationBucket:
        data: dict[str, object] = {
            "project_id": "shop",
            "granularity": "hourly",
            "bucket_start": start,
            "bucket_end": start + timedelta(hours=1),
            "total_events": 10,
            "top_countries": [TopItem(value="DE", count=7), TopItem(value="FR", count=3)],
            "computed_at": T0,
        }
        data.update(overrides)
        return AggregationBucket(**data)

    def test_upsert_replaces_existing_row(self, db_path: str) -> None:
        repo = SQLiteBucketRepo(db_path)
        repo.upsert(self.make_bucket())
        repo.upsert(self.make_bucket(total_events=12))

        assert repo.count() == 1
        stored = repo.get("shop", "hourly", T0)
        assert stored is not None
        assert stored.total_events == 12
        assert stored.top_countries[0] == TopItem(value="DE", count=7)

    def test_list_and_distinct_projects(self, db_path: str) -> None:
        repo = SQLiteBucketRepo(db_path)
        repo.upsert(self.make_bucket(T0 + timedelta(hours=1)))
        repo.upsert(self.make_bucket(T0))
        repo.upsert(self.make_bucket(T0, project_id="blog"))
        repo.upsert(self.make_bucket(T0, granularity="daily"))

        rows = repo.list_buckets("shop", "hourly", T0, T0 + timedelta(hours=2))
        assert [b.bucket_start for b in rows] == [T0, T0 + timedelta(hours=1)]
        assert repo.distinct_projects("hourly", T0, T0 + timedelta(hours=1)) == ["blog", "shop"]


# --- Geo cache ---


class TestSQLiteGeoCache:
    def test_expiry_and_purge(self, db_path: str, clock) -> None:
        cache = SQLiteGeoCache(db_path, time_port=clock)
        cache.set("geo:203.0.113.7", {"country_code": "DE"}, ttl_seconds=60)
        cache.set("geo:198.51.100.1", {"country_code": "FR"}, ttl_seconds=600)

        assert cache.get("geo:203.0.113.7") == {"country_code": "DE"}

        clock.advance(61)
        assert cache.get("geo:203.0.113.7") is None
        assert cache.purge_expired(clock.now_utc()) == 1
        assert cache.get("geo:198.51.100.1") == {"country_code": "FR"}


# --- Unit of Work ---


class TestSQLiteUnitOfWork:
    def test_commit_persists(self, db_path: str) -> None:
        with SQLiteUnitOfWork(db_path) as uow:
            uow.events.insert(make_event())
            uow.sessions.upsert(
                SessionRecord(session_id="s1", project_id="shop", start_time=T0, end_time=T0)
            )
            uow.commit()

        assert SQLiteEventRepo(db_path).count() == 1
        assert SQLiteSessionRepo(db_path).get("s1") is not None

    def test_exception_rolls_back(self, db_path: str) -> None:
        with pytest.raises(RuntimeError):
            with SQLiteUnitOfWork(db_path) as uow:
                uow.events.insert(make_event())
                raise RuntimeError("boom")

        assert SQLiteEventRepo(db_path).count() == 0
