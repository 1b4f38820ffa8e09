"""DuckDB storage for session history.

Keeps a record of every ended session and every lock signal so the
activity report can show daily usage, overage and bedtime violations.
"""

import shutil
import tempfile
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import duckdb

from screenwatch.models import EndReason, LockReason, SessionSnapshot


SCHEMA_VERSION = 1


class SessionStore:
    """DuckDB-backed storage for sessions and lock events."""

    def __init__(self, db_path: Path, read_only: bool = False) -> None:
        """Initialize the session store.

        Args:
            db_path: Path to the DuckDB database file. Use ":memory:" for in-memory.
            read_only: If True, open in read-only mode (allows concurrent readers).
        """
        self.db_path = db_path
        self.read_only = read_only
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._temp_db_path: Optional[Path] = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        db_str = str(self.db_path) if self.db_path != Path(":memory:") else ":memory:"

        if self.read_only and self.db_path != Path(":memory:"):
            try:
                self._conn = duckdb.connect(db_str, read_only=True)
            except duckdb.IOException:
                # Locked by a running monitor; read from a copy instead
                temp_dir = tempfile.mkdtemp(prefix="screenwatch_")
                self._temp_db_path = Path(temp_dir) / "history.db"
                shutil.copy2(self.db_path, self._temp_db_path)
                wal_path = Path(str(self.db_path) + ".wal")
                if wal_path.exists():
                    shutil.copy2(wal_path, Path(temp_dir) / "history.db.wal")
                self._conn = duckdb.connect(str(self._temp_db_path), read_only=True)
        else:
            self._conn = duckdb.connect(db_str, read_only=self.read_only)

        if not self.read_only:
            self._ensure_schema()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
        if self._temp_db_path and self._temp_db_path.exists():
            shutil.rmtree(self._temp_db_path.parent, ignore_errors=True)
            self._temp_db_path = None

    def __enter__(self) -> "SessionStore":
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get the database connection, raising if not connected."""
        if self._conn is None:
            raise RuntimeError("SessionStore not connected. Call connect() first.")
        return self._conn

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        result = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current_version = result[0] if result and result[0] else 0

        if current_version < SCHEMA_VERSION:
            self._apply_schema()
            self.conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                [SCHEMA_VERSION]
            )

    def _apply_schema(self) -> None:
        """Apply the database schema."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id VARCHAR PRIMARY KEY,
                age_group VARCHAR NOT NULL,
                started_at TIMESTAMP NOT NULL,
                ended_at TIMESTAMP NOT NULL,
                last_observed_at TIMESTAMP NOT NULL,
                elapsed_minutes INTEGER NOT NULL,
                limit_minutes INTEGER NOT NULL,
                end_reason VARCHAR NOT NULL,
                lock_reason VARCHAR,

                recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS lock_events (
                id VARCHAR PRIMARY KEY,
                session_id VARCHAR NOT NULL,
                age_group VARCHAR NOT NULL,
                reason VARCHAR NOT NULL,
                raised_at TIMESTAMP NOT NULL,
                elapsed_minutes INTEGER NOT NULL
            )
        """)

        self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_started
            ON sessions (started_at)
        """)
        self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_locks_raised
            ON lock_events (raised_at)
        """)

    def record_session(
        self,
        snapshot: SessionSnapshot,
        reason: EndReason,
        ended_at: datetime,
    ) -> str:
        """Insert an ended session and return its ID."""
        self.conn.execute("""
            INSERT INTO sessions (
                id, age_group, started_at, ended_at, last_observed_at,
                elapsed_minutes, limit_minutes, end_reason, lock_reason
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            snapshot.id,
            snapshot.age_group.value,
            snapshot.started_at,
            ended_at,
            snapshot.last_observed_at,
            snapshot.elapsed_minutes,
            snapshot.limit_minutes,
            reason.value,
            snapshot.lock_reason.value if snapshot.lock_reason else None,
        ])
        return snapshot.id

    def record_lock(
        self,
        snapshot: SessionSnapshot,
        reason: LockReason,
        raised_at: datetime,
    ) -> str:
        """Insert a lock event and return its ID."""
        event_id = str(uuid.uuid4())
        self.conn.execute("""
            INSERT INTO lock_events (
                id, session_id, age_group, reason, raised_at, elapsed_minutes
            ) VALUES (?, ?, ?, ?, ?, ?)
        """, [
            event_id,
            snapshot.id,
            snapshot.age_group.value,
            reason.value,
            raised_at,
            snapshot.elapsed_minutes,
        ])
        return event_id

    def get_recent_sessions(self, limit: int = 20) -> list[dict]:
        """Get the most recently started sessions."""
        result = self.conn.execute("""
            SELECT id, age_group, started_at, ended_at, elapsed_minutes,
                   limit_minutes, end_reason, lock_reason
            FROM sessions
            ORDER BY started_at DESC
            LIMIT ?
        """, [limit]).fetchall()

        columns = ["id", "age_group", "started_at", "ended_at", "elapsed_minutes",
                   "limit_minutes", "end_reason", "lock_reason"]
        return [dict(zip(columns, row)) for row in result]

    def get_daily_activity(self, days: int = 7, now: Optional[datetime] = None) -> list[dict]:
        """Get per-day, per-age-group usage for the last N days.

        Minutes are summed over sessions started that day; overage is the
        amount above the group's limit. Lock counts come from lock_events.
        """
        since = (now or datetime.now()) - timedelta(days=days)

        result = self.conn.execute("""
            WITH usage AS (
                SELECT
                    CAST(started_at AS DATE) AS day,
                    age_group,
                    SUM(elapsed_minutes) AS minutes,
                    MAX(limit_minutes) AS limit_minutes,
                    COUNT(*) AS sessions
                FROM sessions
                WHERE started_at >= ?
                GROUP BY 1, 2
            ),
            locks AS (
                SELECT
                    CAST(raised_at AS DATE) AS day,
                    age_group,
                    SUM(CASE WHEN reason = 'bedtime' THEN 1 ELSE 0 END) AS bedtime_locks,
                    SUM(CASE WHEN reason = 'screen_time' THEN 1 ELSE 0 END) AS screen_time_locks
                FROM lock_events
                WHERE raised_at >= ?
                GROUP BY 1, 2
            )
            SELECT
                usage.day,
                usage.age_group,
                usage.sessions,
                usage.minutes,
                usage.limit_minutes,
                COALESCE(locks.bedtime_locks, 0),
                COALESCE(locks.screen_time_locks, 0)
            FROM usage
            LEFT JOIN locks
              ON usage.day = locks.day AND usage.age_group = locks.age_group
            ORDER BY usage.day DESC, usage.age_group
        """, [since, since]).fetchall()

        activity = []
        for day, age_group, sessions, minutes, limit, bedtime_locks, screen_locks in result:
            minutes = int(minutes or 0)
            limit = int(limit or 0)
            overage = max(0, minutes - limit) if limit > 0 else 0
            if overage > 0:
                status = "exceeded"
            elif limit > 0 and minutes > limit * 0.8:
                status = "warning"
            else:
                status = "good"
            activity.append({
                "day": day,
                "age_group": age_group,
                "sessions": int(sessions),
                "minutes": minutes,
                "limit_minutes": limit,
                "overage_minutes": overage,
                "bedtime_violations": int(bedtime_locks),
                "screen_time_locks": int(screen_locks),
                "status": status,
            })
        return activity

    def get_table_stats(self) -> dict[str, dict]:
        """Get row counts and oldest timestamps for the history tables."""
        stats = {}
        for table, column in (("sessions", "started_at"), ("lock_events", "raised_at")):
            row = self.conn.execute(
                f"SELECT COUNT(*), MIN({column}) FROM {table}"
            ).fetchone()
            stats[table] = {"count": row[0] if row else 0, "oldest": row[1] if row else None}
        return stats

    def cleanup_old_data(self, days: int, now: Optional[datetime] = None) -> dict[str, int]:
        """Delete sessions and lock events older than N days."""
        cutoff = (now or datetime.now()) - timedelta(days=days)

        sessions_deleted = self.conn.execute(
            "SELECT COUNT(*) FROM sessions WHERE started_at < ?", [cutoff]
        ).fetchone()[0]
        locks_deleted = self.conn.execute(
            "SELECT COUNT(*) FROM lock_events WHERE raised_at < ?", [cutoff]
        ).fetchone()[0]

        self.conn.execute("DELETE FROM sessions WHERE started_at < ?", [cutoff])
        self.conn.execute("DELETE FROM lock_events WHERE raised_at < ?", [cutoff])

        return {"sessions_deleted": sessions_deleted, "locks_deleted": locks_deleted}

    def vacuum(self) -> None:
        """Reclaim disk space after deletes."""
        self.conn.execute("VACUUM")
