"""
Job Queue Service

Durable queue table on Supabase (table `job_queue`). PostgREST has no
row locking, so claims are compare-and-set updates filtered on the
message's previous attempt_count: of two workers racing for a message
only one update matches a row.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from studio_backend.jobs.models import JobType, QueueMessage, utcnow
from studio_backend.jobs.queue import JobQueue, message_from_row, new_lease_token
from studio_backend.utils.logging import queue_logger

from .client import execute, get_supabase_admin_client


TABLE = "job_queue"

# Candidates fetched per dequeue; losing a race on one moves on to the next.
CLAIM_BATCH = 5


def _timestamp(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def _epoch(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()


class SupabaseJobQueue(JobQueue):
    """Queue of job references stored in Postgres through Supabase."""

    def __init__(self, client: Optional[Client] = None, **kwargs):
        super().__init__(**kwargs)
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_admin_client()
        return self._client

    async def enqueue(self, job_type: JobType, job_id: str) -> bool:
        result = await execute(
            self.client.table(TABLE)
            .upsert(
                {
                    "job_id": job_id,
                    "type": JobType(job_type).value,
                    "attempt_count": 0,
                    "visible_at": _timestamp(self.clock()),
                    "created_at": utcnow().isoformat(),
                },
                on_conflict="job_id",
                ignore_duplicates=True,
            )
        )
        created = bool(result.data)
        if created:
            queue_logger.debug("Message enqueued", job_id=job_id, type=JobType(job_type).value)
        return created

    async def dequeue(self) -> Optional[QueueMessage]:
        now = self.clock()
        candidates = await execute(
            self.client.table(TABLE)
            .select("id, attempt_count")
            .lte("visible_at", _timestamp(now))
            .order("visible_at")
            .order("id")
            .limit(CLAIM_BATCH)
        )

        for candidate in candidates.data:
            claimed = await execute(
                self.client.table(TABLE)
                .update({
                    "attempt_count": candidate["attempt_count"] + 1,
                    "visible_at": _timestamp(now + self.visibility_timeout),
                    "lease_token": new_lease_token(),
                })
                .eq("id", candidate["id"])
                .eq("attempt_count", candidate["attempt_count"])
                .lte("visible_at", _timestamp(now))
            )
            if claimed.data:
                row = dict(claimed.data[0])
                row["visible_at"] = _epoch(row["visible_at"])
                return message_from_row(row)

        return None

    async def _delete(self, message: QueueMessage) -> bool:
        result = await execute(
            self.client.table(TABLE)
            .delete()
            .eq("id", message.id)
            .eq("lease_token", message.lease_token)
        )
        return bool(result.data)

    async def _release(self, message: QueueMessage, visible_at: float) -> bool:
        result = await execute(
            self.client.table(TABLE)
            .update({"visible_at": _timestamp(visible_at), "lease_token": None})
            .eq("id", message.id)
            .eq("lease_token", message.lease_token)
        )
        return bool(result.data)

    async def extend(self, message: QueueMessage, seconds: Optional[float] = None) -> bool:
        seconds = self.visibility_timeout if seconds is None else seconds
        result = await execute(
            self.client.table(TABLE)
            .update({"visible_at": _timestamp(self.clock() + seconds)})
            .eq("id", message.id)
            .eq("lease_token", message.lease_token)
        )
        return bool(result.data)

    async def queued_job_ids(self) -> List[str]:
        result = await execute(self.client.table(TABLE).select("job_id"))
        return [row["job_id"] for row in result.data]

    async def stats(self) -> Dict[str, Any]:
        now = self.clock()
        result = await execute(
            self.client.table(TABLE)
            .select("visible_at, lease_token, attempt_count")
        )

        stats = {"total": 0, "visible": 0, "leased": 0, "delayed": 0, "max_attempts": 0}
        for row in result.data:
            stats["total"] += 1
            stats["max_attempts"] = max(stats["max_attempts"], row.get("attempt_count") or 0)
            if _epoch(row["visible_at"]) <= now:
                stats["visible"] += 1
            elif row.get("lease_token"):
                stats["leased"] += 1
            else:
                stats["delayed"] += 1
        return stats
