"""
SQLite adapters.

Implements the event, session, reputation, rate limit, bucket and geo cache
ports on top of the schema in migrations/. Timestamps are stored as
fixed-width ISO-8601 UTC strings so range filters can compare text.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime, timedelta
from typing import Any

from clickguard.components.fraud.models import ReputationUpdate
from clickguard.core.entities import (
    AggregationBucket,
    Event,
    FraudReputation,
    RateLimitViolation,
    SessionRecord,
)
from clickguard.core.ports.time import TimePort
from clickguard.core.timewindows import ensure_utc

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------

EVENT_COLUMNS: tuple[str, ...] = tuple(Event.model_fields)

# Columns distinct_session_values may read
SESSION_VALUE_COLUMNS = frozenset({"ip_address", "country_code"})


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def to_db(dt: datetime) -> str:
    """Serialise a datetime as a sortable UTC string."""
    return ensure_utc(dt).isoformat(timespec="microseconds")


def parse_dt(s: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    return ensure_utc(datetime.fromisoformat(s)) if s else None


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(self, db_path: str, connection: sqlite3.Connection | None = None):
        self.db_path = db_path
        self._external_conn = connection

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = dict_factory
        return conn

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None

    def _write(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Run one write statement, committing when the connection is ours."""
        conn = self._get_conn()
        try:
            cursor = conn.execute(sql, params)
            if self._should_close():
                conn.commit()
            return cursor.rowcount
        finally:
            if self._should_close():
                conn.close()

    def _fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            if self._should_close():
                conn.close()

    def _fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            if self._should_close():
                conn.close()


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


class SQLiteEventRepo(SQLiteRepoBase):
    """Raw event store. Implements EventHistoryPort and EventSourcePort."""

    def insert(self, event: Event) -> Event:
        placeholders = ", ".join("?" for _ in EVENT_COLUMNS)
        self._write(
            f"INSERT INTO events ({', '.join(EVENT_COLUMNS)}) VALUES ({placeholders})",
            self._to_row(event),
        )
        return event

    def list_session_events(
        self,
        session_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        sql = "SELECT * FROM events WHERE session_id = ?"
        params: list[Any] = [session_id]
        if since is not None:
            sql += " AND timestamp >= ?"
            params.append(to_db(since))
        if limit is not None:
            # Most recent `limit`, returned oldest first
            sql = f"SELECT * FROM ({sql} ORDER BY timestamp DESC LIMIT ?) ORDER BY timestamp"
            params.append(limit)
        else:
            sql += " ORDER BY timestamp"
        return [self._map_row(r) for r in self._fetch_all(sql, tuple(params))]

    def count_ip_events(self, ip_address: str, start: datetime, end: datetime) -> int:
        row = self._fetch_one(
            """
            SELECT COUNT(*) AS n FROM events
            WHERE ip_address = ? AND timestamp >= ? AND timestamp <= ?
            """,
            (ip_address, to_db(start), to_db(end)),
        )
        return row["n"] if row else 0

    def distinct_session_values(self, session_id: str, column: str) -> set[str]:
        if column not in SESSION_VALUE_COLUMNS:
            raise ValueError(f"Unsupported session column: {column}")
        rows = self._fetch_all(
            f"SELECT DISTINCT {column} AS value FROM events "
            f"WHERE session_id = ? AND {column} IS NOT NULL",
            (session_id,),
        )
        return {r["value"] for r in rows if r["value"]}

    def list_events(
        self,
        start: datetime,
        end: datetime,
        project_id: str | None = None,
    ) -> list[Event]:
        """Events with start <= timestamp < end."""
        sql = "SELECT * FROM events WHERE timestamp >= ? AND timestamp < ?"
        params: list[Any] = [to_db(start), to_db(end)]
        if project_id is not None:
            sql += " AND project_id = ?"
            params.append(project_id)
        sql += " ORDER BY timestamp"
        return [self._map_row(r) for r in self._fetch_all(sql, tuple(params))]

    def distinct_projects(self, start: datetime, end: datetime) -> list[str]:
        rows = self._fetch_all(
            """
            SELECT DISTINCT project_id FROM events
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY project_id
            """,
            (to_db(start), to_db(end)),
        )
        return [r["project_id"] for r in rows]

    def delete_before(self, cutoff: datetime) -> int:
        return self._write("DELETE FROM events WHERE timestamp < ?", (to_db(cutoff),))

    def count(self) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS n FROM events")
        return row["n"] if row else 0

    def _to_row(self, event: Event) -> tuple[Any, ...]:
        data = event.model_dump()
        data["id"] = str(event.id)
        data["timestamp"] = to_db(event.timestamp)
        data["custom_params"] = json.dumps(event.custom_params, default=str)
        return tuple(data[col] for col in EVENT_COLUMNS)

    def _map_row(self, row: dict[str, Any]) -> Event:
        data = {col: row[col] for col in EVENT_COLUMNS}
        data["timestamp"] = parse_dt(row["timestamp"])
        data["custom_params"] = json.loads(row["custom_params"] or "{}")
        for flag in ("is_bot", "is_crawler", "rate_limited"):
            data[flag] = bool(row[flag])
        return Event.model_validate(data)


# -----------------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------------


class SQLiteSessionRepo(SQLiteRepoBase):
    """Session summary store."""

    def get(self, session_id: str) -> SessionRecord | None:
        row = self._fetch_one("SELECT * FROM sessions WHERE session_id = ?", (session_id,))
        return self._map_row(row) if row else None

    def upsert(self, session: SessionRecord) -> SessionRecord:
        self._write(
            """
            INSERT INTO sessions (
                session_id, project_id, ip_address, start_time, end_time,
                page_views, events_count, entry_referrer_type, is_returning
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                end_time = excluded.end_time,
                page_views = excluded.page_views,
                events_count = excluded.events_count,
                is_returning = excluded.is_returning
            """,
            (
                session.session_id,
                session.project_id,
                session.ip_address,
                to_db(session.start_time),
                to_db(session.end_time),
                session.page_views,
                session.events_count,
                session.entry_referrer_type,
                int(session.is_returning),
            ),
        )
        return session

    def has_prior_session(self, project_id: str, ip_address: str, before: datetime) -> bool:
        row = self._fetch_one(
            """
            SELECT 1 AS found FROM sessions
            WHERE project_id = ? AND ip_address = ? AND start_time < ?
            LIMIT 1
            """,
            (project_id, ip_address, to_db(before)),
        )
        return row is not None

    def list_started(self, project_id: str, start: datetime, end: datetime) -> list[SessionRecord]:
        rows = self._fetch_all(
            """
            SELECT * FROM sessions
            WHERE project_id = ? AND start_time >= ? AND start_time < ?
            ORDER BY start_time
            """,
            (project_id, to_db(start), to_db(end)),
        )
        return [self._map_row(r) for r in rows]

    def delete_before(self, cutoff: datetime) -> int:
        return self._write("DELETE FROM sessions WHERE end_time < ?", (to_db(cutoff),))

    def _map_row(self, row: dict[str, Any]) -> SessionRecord:
        return SessionRecord(
            session_id=row["session_id"],
            project_id=row["project_id"],
            ip_address=row["ip_address"],
            start_time=parse_dt(row["start_time"]),
            end_time=parse_dt(row["end_time"]),
            page_views=row["page_views"],
            events_count=row["events_count"],
            entry_referrer_type=row["entry_referrer_type"],
            is_returning=bool(row["is_returning"]),
        )


# -----------------------------------------------------------------------------
# Fraud reputation
# -----------------------------------------------------------------------------


class SQLiteReputationRepo(SQLiteRepoBase):
    """SQLite implementation of ReputationRepoPort."""

    def get(self, ip_address: str) -> FraudReputation | None:
        row = self._fetch_one(
            "SELECT * FROM fraud_reputation WHERE ip_address = ?", (ip_address,)
        )
        if row is None:
            return None
        return FraudReputation(
            ip_address=row["ip_address"],
            base_score=row["base_score"],
            vpn_detected=bool(row["vpn_detected"]),
            proxy_detected=bool(row["proxy_detected"]),
            tor_detected=bool(row["tor_detected"]),
            hosting_provider=bool(row["hosting_provider"]),
            total_events=row["total_events"],
            suspicious_events=row["suspicious_events"],
            blocked_events=row["blocked_events"],
            last_updated=parse_dt(row["last_updated"]),
        )

    def upsert(self, reputation: FraudReputation) -> FraudReputation:
        self._write(
            """
            INSERT INTO fraud_reputation (
                ip_address, base_score, vpn_detected, proxy_detected, tor_detected,
                hosting_provider, total_events, suspicious_events, blocked_events,
                last_updated
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(ip_address) DO UPDATE SET
                base_score = excluded.base_score,
                vpn_detected = excluded.vpn_detected,
                proxy_detected = excluded.proxy_detected,
                tor_detected = excluded.tor_detected,
                hosting_provider = excluded.hosting_provider,
                total_events = excluded.total_events,
                suspicious_events = excluded.suspicious_events,
                blocked_events = excluded.blocked_events,
                last_updated = excluded.last_updated
            """,
            (
                reputation.ip_address,
                reputation.base_score,
                int(reputation.vpn_detected),
                int(reputation.proxy_detected),
                int(reputation.tor_detected),
                int(reputation.hosting_provider),
                reputation.total_events,
                reputation.suspicious_events,
                reputation.blocked_events,
                to_db(reputation.last_updated),
            ),
        )
        return reputation

    def record(self, update: ReputationUpdate) -> FraudReputation:
        """Increment counters and OR flags in one statement."""
        self._write(
            """
            INSERT INTO fraud_reputation (
                ip_address, base_score, vpn_detected, proxy_detected, tor_detected,
                hosting_provider, total_events, suspicious_events, blocked_events,
                last_updated
            ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
            ON CONFLICT(ip_address) DO UPDATE SET
                base_score = excluded.base_score,
                vpn_detected = MAX(fraud_reputation.vpn_detected, excluded.vpn_detected),
                proxy_detected = MAX(fraud_reputation.proxy_detected, excluded.proxy_detected),
                tor_detected = MAX(fraud_reputation.tor_detected, excluded.tor_detected),
                hosting_provider = MAX(
                    fraud_reputation.hosting_provider, excluded.hosting_provider
                ),
                total_events = fraud_reputation.total_events + 1,
                suspicious_events = fraud_reputation.suspicious_events
                    + excluded.suspicious_events,
                blocked_events = fraud_reputation.blocked_events + excluded.blocked_events,
                last_updated = excluded.last_updated
            """,
            (
                update.ip_address,
                update.base_score,
                int(update.vpn),
                int(update.proxy),
                int(update.tor),
                int(update.hosting),
                int(update.suspicious),
                int(update.blocked),
                to_db(update.observed_at),
            ),
        )
        stored = self.get(update.ip_address)
        assert stored is not None
        return stored


# -----------------------------------------------------------------------------
# Rate limiting
# -----------------------------------------------------------------------------


class SQLiteRateLimitRepo(SQLiteRepoBase):
    """SQLite implementation of RateLimitRepoPort."""

    def count_requests(self, key: str, start: datetime, end: datetime) -> int:
        row = self._fetch_one(
            """
            SELECT COUNT(*) AS n FROM rate_limit_requests
            WHERE counter_key = ? AND requested_at >= ? AND requested_at <= ?
            """,
            (key, to_db(start), to_db(end)),
        )
        return row["n"] if row else 0

    def record_request(self, key: str, at: datetime) -> None:
        self._write(
            "INSERT INTO rate_limit_requests (counter_key, requested_at) VALUES (?, ?)",
            (key, to_db(at)),
        )

    def record_if_below(
        self, key: str, start: datetime, end: datetime, max_requests: int
    ) -> int:
        """
        Count requests in [start, end] and record one at `end` if below the limit.

        Runs under BEGIN IMMEDIATE so concurrent writers cannot both see
        the same count. Returns the count before recording.
        """
        conn = self._get_conn()
        own = self._should_close()
        try:
            if own:
                conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM rate_limit_requests
                WHERE counter_key = ? AND requested_at >= ? AND requested_at <= ?
                """,
                (key, to_db(start), to_db(end)),
            ).fetchone()
            count = row["n"] if row else 0
            if count < max_requests:
                conn.execute(
                    "INSERT INTO rate_limit_requests (counter_key, requested_at) VALUES (?, ?)",
                    (key, to_db(end)),
                )
            if own:
                conn.commit()
            return count
        except Exception:
            if own:
                conn.rollback()
            raise
        finally:
            if own:
                conn.close()

    def prune_requests(self, before: datetime) -> int:
        return self._write(
            "DELETE FROM rate_limit_requests WHERE requested_at < ?", (to_db(before),)
        )

    def record_violation(self, violation: RateLimitViolation) -> None:
        self._write(
            """
            INSERT INTO rate_limit_violations (
                scope, identifier, request_count, limit_value, window_seconds, occurred_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                violation.scope,
                violation.identifier,
                violation.request_count,
                violation.limit,
                violation.window_seconds,
                to_db(violation.occurred_at),
            ),
        )

    def violations(self) -> list[RateLimitViolation]:
        rows = self._fetch_all("SELECT * FROM rate_limit_violations ORDER BY id")
        return [
            RateLimitViolation(
                scope=r["scope"],
                identifier=r["identifier"],
                request_count=r["request_count"],
                limit=r["limit_value"],
                window_seconds=r["window_seconds"],
                occurred_at=parse_dt(r["occurred_at"]),
            )
            for r in rows
        ]


# -----------------------------------------------------------------------------
# Aggregation buckets
# -----------------------------------------------------------------------------


class SQLiteBucketRepo(SQLiteRepoBase):
    """
    SQLite implementation of BucketRepoPort.

    The full bucket is stored as JSON in `metrics`; the key and range
    columns exist for lookups.
    """

    def upsert(self, bucket: AggregationBucket) -> AggregationBucket:
        self._write(
            """
            INSERT INTO aggregation_buckets (
                project_id, granularity, bucket_start, bucket_end,
                metrics, total_events, computed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, granularity, bucket_start) DO UPDATE SET
                bucket_end = excluded.bucket_end,
                metrics = excluded.metrics,
                total_events = excluded.total_events,
                computed_at = excluded.computed_at
            """,
            (
                bucket.project_id,
                bucket.granularity,
                to_db(bucket.bucket_start),
                to_db(bucket.bucket_end),
                bucket.model_dump_json(),
                bucket.total_events,
                to_db(bucket.computed_at),
            ),
        )
        return bucket

    def get(
        self,
        project_id: str,
        granularity: str,
        bucket_start: datetime,
    ) -> AggregationBucket | None:
        row = self._fetch_one(
            """
            SELECT metrics FROM aggregation_buckets
            WHERE project_id = ? AND granularity = ? AND bucket_start = ?
            """,
            (project_id, granularity, to_db(bucket_start)),
        )
        return self._map_row(row) if row else None

    def list_buckets(
        self,
        project_id: str,
        granularity: str,
        start: datetime,
        end: datetime,
    ) -> list[AggregationBucket]:
        rows = self._fetch_all(
            """
            SELECT metrics FROM aggregation_buckets
            WHERE project_id = ? AND granularity = ?
              AND bucket_start >= ? AND bucket_start < ?
            ORDER BY bucket_start
            """,
            (project_id, granularity, to_db(start), to_db(end)),
        )
        return [self._map_row(r) for r in rows]

    def distinct_projects(self, granularity: str, start: datetime, end: datetime) -> list[str]:
        rows = self._fetch_all(
            """
            SELECT DISTINCT project_id FROM aggregation_buckets
            WHERE granularity = ? AND bucket_start >= ? AND bucket_start < ?
            ORDER BY project_id
            """,
            (granularity, to_db(start), to_db(end)),
        )
        return [r["project_id"] for r in rows]

    def count(self) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS n FROM aggregation_buckets")
        return row["n"] if row else 0

    def _map_row(self, row: dict[str, Any]) -> AggregationBucket:
        return AggregationBucket.model_validate_json(row["metrics"])


# -----------------------------------------------------------------------------
# Geo cache
# -----------------------------------------------------------------------------


class SQLiteGeoCache(SQLiteRepoBase):
    """SQLite implementation of GeoCachePort."""

    def __init__(
        self,
        db_path: str,
        connection: sqlite3.Connection | None = None,
        time_port: TimePort | None = None,
    ):
        super().__init__(db_path, connection)
        self._time_port = time_port

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        return datetime.now(UTC)

    def get(self, key: str) -> dict[str, Any] | None:
        row = self._fetch_one(
            "SELECT value FROM geo_cache WHERE cache_key = ? AND expires_at > ?",
            (key, to_db(self._now())),
        )
        return json.loads(row["value"]) if row else None

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        expires_at = self._now() + timedelta(seconds=ttl_seconds)
        self._write(
            """
            INSERT INTO geo_cache (cache_key, value, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(cache_key) DO UPDATE SET
                value = excluded.value,
                expires_at = excluded.expires_at
            """,
            (key, json.dumps(value, default=str), to_db(expires_at)),
        )

    def purge_expired(self, now: datetime) -> int:
        return self._write("DELETE FROM geo_cache WHERE expires_at <= ?", (to_db(now),))


# -----------------------------------------------------------------------------
# Unit of Work
# -----------------------------------------------------------------------------


class SQLiteUnitOfWork:
    """
    SQLite Unit of Work.

    Repositories created here share one connection, so writes made through
    any of them commit or roll back together.
    """

    def __init__(self, db_path: str, time_port: TimePort | None = None):
        self.db_path = db_path
        self._time_port = time_port
        self._conn: sqlite3.Connection | None = None

        # Lazy-initialized repositories
        self._events: SQLiteEventRepo | None = None
        self._sessions: SQLiteSessionRepo | None = None
        self._reputations: SQLiteReputationRepo | None = None
        self._rate_limits: SQLiteRateLimitRepo | None = None
        self._buckets: SQLiteBucketRepo | None = None
        self._geo_cache: SQLiteGeoCache | None = None

    def __enter__(self) -> SQLiteUnitOfWork:
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = dict_factory
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_type is not None:
            self.rollback()
        if self._conn:
            self._conn.close()
            self._conn = None

    def commit(self) -> None:
        if self._conn:
            self._conn.commit()

    def rollback(self) -> None:
        if self._conn:
            self._conn.rollback()

    @property
    def events(self) -> SQLiteEventRepo:
        if self._events is None:
            self._events = SQLiteEventRepo(self.db_path, self._conn)
        return self._events

    @property
    def sessions(self) -> SQLiteSessionRepo:
        if self._sessions is None:
            self._sessions = SQLiteSessionRepo(self.db_path, self._conn)
        return self._sessions

    @property
    def reputations(self) -> SQLiteReputationRepo:
        if self._reputations is None:
            self._reputations = SQLiteReputationRepo(self.db_path, self._conn)
        return self._reputations

    @property
    def rate_limits(self) -> SQLiteRateLimitRepo:
        if self._rate_limits is None:
            self._rate_limits = SQLiteRateLimitRepo(self.db_path, self._conn)
        return self._rate_limits

    @property
    def buckets(self) -> SQLiteBucketRepo:
        if self._buckets is None:
            self._buckets = SQLiteBucketRepo(self.db_path, self._conn)
        return self._buckets

    @property
    def geo_cache(self) -> SQLiteGeoCache:
        if self._geo_cache is None:
            self._geo_cache = SQLiteGeoCache(self.db_path, self._conn, self._time_port)
        return self._geo_cache
