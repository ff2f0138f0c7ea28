"""
Durable job queue.

Messages only reference jobs by id; the job store stays the source of
truth for business state. Delivery is at-least-once: a dequeued message
is hidden for the visibility timeout and becomes visible again unless
the holder acks it (or keeps extending its lease).

Usage:
    async with SqliteJobQueue(db) as queue:
        await queue.enqueue(job.type, job.id)

        message = await queue.dequeue()
        if message:
            ...
            await queue.ack(message)
"""

import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from studio_backend.jobs.database import JobDatabase, to_db_value
from studio_backend.jobs.errors import RedeliveryExhausted
from studio_backend.jobs.models import JobType, QueueMessage, utcnow
from studio_backend.utils.logging import queue_logger


def new_lease_token() -> str:
    return uuid.uuid4().hex


def message_from_row(row: Dict[str, Any]) -> QueueMessage:
    visible_at = row.get("visible_at")
    if isinstance(visible_at, (int, float)):
        visible_at = datetime.fromtimestamp(visible_at, tz=timezone.utc)
    return QueueMessage(
        id=row["id"],
        job_id=row["job_id"],
        type=row["type"],
        attempt_count=row.get("attempt_count") or 0,
        lease_token=row.get("lease_token"),
        visible_at=visible_at,
    )


class JobQueue(ABC):
    """
    Competing-consumer queue with visibility timeouts.

    Args:
        visibility_timeout: seconds a dequeued message stays hidden
        max_retries: deliveries allowed before nack gives up on a message
        retry_delay: seconds a nacked message waits before redelivery
        clock: returns epoch seconds; injectable for tests
    """

    def __init__(
        self,
        visibility_timeout: float = 300,
        max_retries: int = 3,
        retry_delay: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.visibility_timeout = visibility_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.clock = clock

    async def open(self):
        """Acquire connections."""

    async def close(self):
        """Release connections."""

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @abstractmethod
    async def enqueue(self, job_type: JobType, job_id: str) -> bool:
        """
        Add a message for a job.

        Idempotent per job_id. Returns False when a message for the job
        already exists.
        """

    @abstractmethod
    async def dequeue(self) -> Optional[QueueMessage]:
        """Claim at most one visible message."""

    async def ack(self, message: QueueMessage) -> bool:
        """Remove a message; only succeeds while the caller holds the lease."""
        deleted = await self._delete(message)
        if not deleted:
            queue_logger.warning("Ack ignored: lease no longer held", job_id=message.job_id)
        return deleted

    @abstractmethod
    async def _delete(self, message: QueueMessage) -> bool:
        """Remove a message held under the caller's lease."""

    @abstractmethod
    async def _release(self, message: QueueMessage, visible_at: float) -> bool:
        """Drop the caller's lease and make the message visible at `visible_at`."""

    async def nack(self, message: QueueMessage):
        """
        Hand a message back for redelivery after the retry delay.

        Raises:
            RedeliveryExhausted: the message has used up its deliveries and
                was deleted; the caller must fail the job
        """
        if message.attempt_count >= self.max_retries:
            await self._delete(message)
            queue_logger.warning(
                "Message dropped after max deliveries",
                job_id=message.job_id,
                attempts=message.attempt_count,
            )
            raise RedeliveryExhausted(message.job_id, message.attempt_count)

        released = await self._release(message, self.clock() + self.retry_delay)
        if not released:
            queue_logger.warning(
                "Nack ignored: lease no longer held",
                job_id=message.job_id,
            )

    @abstractmethod
    async def extend(self, message: QueueMessage, seconds: Optional[float] = None) -> bool:
        """Push the message's visibility forward while the caller still holds it."""

    @abstractmethod
    async def queued_job_ids(self) -> List[str]:
        """Job ids that currently have a message, visible or leased."""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        ...


class SqliteJobQueue(JobQueue):
    """Queue table in the same SQLite file as the job store."""

    def __init__(self, db: JobDatabase, **kwargs):
        super().__init__(**kwargs)
        self.db = db

    async def open(self):
        await self.db.connect()

    async def close(self):
        await self.db.close()

    async def enqueue(self, job_type: JobType, job_id: str) -> bool:
        rows = await self.db.execute("""
            INSERT INTO job_queue (job_id, type, attempt_count, visible_at, created_at)
            VALUES (?, ?, 0, ?, ?)
            ON CONFLICT(job_id) DO NOTHING
            RETURNING id
        """, (job_id, JobType(job_type).value, self.clock(), to_db_value(utcnow())))

        if rows:
            queue_logger.debug("Message enqueued", job_id=job_id, type=JobType(job_type).value)
        return bool(rows)

    async def dequeue(self) -> Optional[QueueMessage]:
        now = self.clock()
        rows = await self.db.execute("""
            UPDATE job_queue
            SET attempt_count = attempt_count + 1,
                visible_at = ?,
                lease_token = ?
            WHERE id = (
                SELECT id FROM job_queue
                WHERE visible_at <= ?
                ORDER BY visible_at ASC, id ASC
                LIMIT 1
            )
            RETURNING id, job_id, type, attempt_count, lease_token, visible_at
        """, (now + self.visibility_timeout, new_lease_token(), now))
        return message_from_row(rows[0]) if rows else None

    async def _delete(self, message: QueueMessage) -> bool:
        rows = await self.db.execute(
            "DELETE FROM job_queue WHERE id = ? AND lease_token = ? RETURNING id",
            (message.id, message.lease_token),
        )
        return bool(rows)

    async def _release(self, message: QueueMessage, visible_at: float) -> bool:
        rows = await self.db.execute("""
            UPDATE job_queue
            SET visible_at = ?, lease_token = NULL
            WHERE id = ? AND lease_token = ?
            RETURNING id
        """, (visible_at, message.id, message.lease_token))
        return bool(rows)

    async def extend(self, message: QueueMessage, seconds: Optional[float] = None) -> bool:
        seconds = self.visibility_timeout if seconds is None else seconds
        rows = await self.db.execute("""
            UPDATE job_queue
            SET visible_at = ?
            WHERE id = ? AND lease_token = ?
            RETURNING id
        """, (self.clock() + seconds, message.id, message.lease_token))
        return bool(rows)

    async def queued_job_ids(self) -> List[str]:
        rows = await self.db.execute("SELECT job_id FROM job_queue")
        return [row["job_id"] for row in rows]

    async def stats(self) -> Dict[str, Any]:
        rows = await self.db.execute("""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN visible_at <= ? THEN 1 ELSE 0 END), 0) AS visible,
                COALESCE(SUM(CASE WHEN visible_at > ? AND lease_token IS NOT NULL THEN 1 ELSE 0 END), 0) AS leased,
                COALESCE(MAX(attempt_count), 0) AS max_attempts
            FROM job_queue
        """, (self.clock(), self.clock()))
        row = rows[0]
        return {
            "total": row["total"],
            "visible": row["visible"],
            "leased": row["leased"],
            "delayed": row["total"] - row["visible"] - row["leased"],
            "max_attempts": row["max_attempts"],
        }
