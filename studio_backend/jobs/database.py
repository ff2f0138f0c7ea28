"""
SQLite backend for the job store.
Uses aiosqlite for async SQLite operations.

JobDatabase owns the connection and both tables (pipeline_jobs and
job_queue), so a local worker and API can share one file. Every logical
operation is a single SQL statement, which keeps conditional updates
atomic even with several coroutines on one connection.
"""

import asyncio
import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from studio_backend.jobs.models import Job, JobStatus, ProgressSnapshot, utcnow
from studio_backend.jobs.store import JobStore, job_from_row


JOB_COLUMNS = (
    "id", "type", "owner_scope", "payload", "status", "progress",
    "progress_current", "result", "error", "created_at", "started_at",
    "completed_at", "updated_at",
)


def to_db_value(value: Any) -> Any:
    """Convert a Python value into what the SQLite column stores."""
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class JobDatabase:
    """Handles the SQLite connection and schema for jobs and queue messages."""

    def __init__(self, db_path: str = "pipeline_jobs.db"):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self):
        """Connect to database and create tables if needed"""
        if self._conn is not None:
            return

        if self.db_path != ":memory:":
            db_dir = Path(self.db_path).parent
            if str(db_dir) != "." and not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        if self.db_path != ":memory:":
            await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._create_tables()

    async def _create_tables(self):
        """Create required tables"""
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS pipeline_jobs (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                owner_scope TEXT NOT NULL,
                payload TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',

                -- Progress tracking (JSON snapshot + its step index)
                progress TEXT,
                progress_current INTEGER,

                -- Output data (JSON on completion, text on failure)
                result TEXT,
                error TEXT,

                -- Timestamps
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                updated_at TEXT
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_pipeline_jobs_scope
            ON pipeline_jobs(owner_scope, created_at)
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_pipeline_jobs_status
            ON pipeline_jobs(status, created_at)
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS job_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT UNIQUE NOT NULL,
                type TEXT NOT NULL,
                attempt_count INTEGER NOT NULL DEFAULT 0,
                lease_token TEXT,
                visible_at REAL NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_job_queue_visible
            ON job_queue(visible_at, id)
        """)

        await self._conn.commit()

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run one statement, commit, and return any rows it produced."""
        if self._conn is None:
            raise RuntimeError("JobDatabase is not connected; call connect() first")

        async with self._lock:
            cursor = await self._conn.execute(sql, tuple(params))
            rows = await cursor.fetchall()
            await cursor.close()
            await self._conn.commit()
        return [dict(row) for row in rows]

    async def close(self):
        """Close database connection"""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


class SqliteJobStore(JobStore):
    """Job store on a local SQLite file; the default for development and tests."""

    def __init__(self, db: JobDatabase):
        self.db = db

    async def open(self):
        await self.db.connect()

    async def close(self):
        await self.db.close()

    async def _insert(self, job: Job):
        values = job.model_dump()
        values["progress"] = None
        values["progress_current"] = None
        await self.db.execute(
            f"INSERT INTO pipeline_jobs ({', '.join(JOB_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in JOB_COLUMNS)})",
            [to_db_value(values.get(column)) for column in JOB_COLUMNS],
        )

    async def _conditional_update(
        self,
        job_id: str,
        sources: Sequence[JobStatus],
        fields: Dict[str, Any],
    ) -> Optional[Job]:
        assignments = ", ".join(f"{column} = ?" for column in fields)
        placeholders = ", ".join("?" for _ in sources)
        rows = await self.db.execute(
            f"""
            UPDATE pipeline_jobs
            SET {assignments}
            WHERE id = ? AND status IN ({placeholders})
            RETURNING *
            """,
            [to_db_value(v) for v in fields.values()]
            + [job_id]
            + [s.value for s in sources],
        )
        return job_from_row(rows[0]) if rows else None

    async def load(self, job_id: str) -> Optional[Job]:
        rows = await self.db.execute(
            "SELECT * FROM pipeline_jobs WHERE id = ?", (job_id,)
        )
        return job_from_row(rows[0]) if rows else None

    async def update_progress(self, job_id: str, snapshot: ProgressSnapshot) -> bool:
        rows = await self.db.execute("""
            UPDATE pipeline_jobs
            SET progress = ?, progress_current = ?, updated_at = ?
            WHERE id = ?
              AND status = 'processing'
              AND (progress_current IS NULL OR progress_current <= ?)
            RETURNING id
        """, (
            json.dumps(snapshot.model_dump()),
            snapshot.current,
            to_db_value(utcnow()),
            job_id,
            snapshot.current,
        ))
        return bool(rows)

    async def list_jobs(
        self,
        owner_scope: str,
        status: Optional[JobStatus] = None,
        limit: int = 20,
    ) -> List[Job]:
        if status:
            rows = await self.db.execute("""
                SELECT * FROM pipeline_jobs
                WHERE owner_scope = ? AND status = ?
                ORDER BY created_at DESC
                LIMIT ?
            """, (owner_scope, JobStatus(status).value, limit))
        else:
            rows = await self.db.execute("""
                SELECT * FROM pipeline_jobs
                WHERE owner_scope = ?
                ORDER BY created_at DESC
                LIMIT ?
            """, (owner_scope, limit))
        return [job_from_row(row) for row in rows]

    async def find_stale(
        self,
        status: JobStatus,
        older_than: datetime,
        limit: int = 100,
    ) -> List[Job]:
        status = JobStatus(status)
        age_column = "started_at" if status == JobStatus.PROCESSING else "created_at"
        rows = await self.db.execute(f"""
            SELECT * FROM pipeline_jobs
            WHERE status = ? AND {age_column} < ?
            ORDER BY {age_column} ASC
            LIMIT ?
        """, (status.value, to_db_value(older_than), limit))
        return [job_from_row(row) for row in rows]

    async def count_by_status(self) -> Dict[str, int]:
        rows = await self.db.execute(
            "SELECT status, COUNT(*) AS total FROM pipeline_jobs GROUP BY status"
        )
        counts = {status.value: 0 for status in JobStatus}
        for row in rows:
            counts[row["status"]] = row["total"]
        return counts
