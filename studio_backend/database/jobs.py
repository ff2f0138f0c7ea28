"""
Job Store Service

Pipeline job records on Supabase (table `pipeline_jobs`).
Shares the state machine rules with the SQLite store through JobStore.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from supabase import Client

from studio_backend.jobs.models import Job, JobStatus, ProgressSnapshot, utcnow
from studio_backend.jobs.store import JobStore, job_from_row

from .client import execute, get_supabase_admin_client


TABLE = "pipeline_jobs"


def to_row_value(value: Any) -> Any:
    """Convert a Python value for PostgREST; JSON columns take dicts as-is."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class SupabaseJobStore(JobStore):
    """
    Service class for job record operations.

    Uses Supabase for persistence, providing:
    - Conditional status updates filtered on the allowed source statuses
    - Concurrent access from several worker processes
    - The same data layer as the rest of the dashboard
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_admin_client()
        return self._client

    # =========================================================================
    # Writes
    # =========================================================================

    async def _insert(self, job: Job):
        row = {key: to_row_value(value) for key, value in job.model_dump().items()}
        row["progress"] = None
        row["progress_current"] = None
        await execute(self.client.table(TABLE).insert(row))

    async def _conditional_update(
        self,
        job_id: str,
        sources: Sequence[JobStatus],
        fields: Dict[str, Any],
    ) -> Optional[Job]:
        result = await execute(
            self.client.table(TABLE)
            .update({key: to_row_value(value) for key, value in fields.items()})
            .eq("id", job_id)
            .in_("status", [s.value for s in sources])
        )
        return job_from_row(result.data[0]) if result.data else None

    async def update_progress(self, job_id: str, snapshot: ProgressSnapshot) -> bool:
        result = await execute(
            self.client.table(TABLE)
            .update({
                "progress": snapshot.model_dump(),
                "progress_current": snapshot.current,
                "updated_at": utcnow().isoformat(),
            })
            .eq("id", job_id)
            .eq("status", JobStatus.PROCESSING.value)
            .or_(f"progress_current.is.null,progress_current.lte.{snapshot.current}")
        )
        return bool(result.data)

    # =========================================================================
    # Reads
    # =========================================================================

    async def load(self, job_id: str) -> Optional[Job]:
        result = await execute(
            self.client.table(TABLE)
            .select("*")
            .eq("id", job_id)
        )
        return job_from_row(result.data[0]) if result.data else None

    async def list_jobs(
        self,
        owner_scope: str,
        status: Optional[JobStatus] = None,
        limit: int = 20,
    ) -> List[Job]:
        query = (
            self.client.table(TABLE)
            .select("*")
            .eq("owner_scope", owner_scope)
            .order("created_at", desc=True)
            .limit(limit)
        )

        if status:
            query = query.eq("status", JobStatus(status).value)

        result = await execute(query)
        return [job_from_row(row) for row in result.data]

    async def find_stale(
        self,
        status: JobStatus,
        older_than: datetime,
        limit: int = 100,
    ) -> List[Job]:
        status = JobStatus(status)
        age_column = "started_at" if status == JobStatus.PROCESSING else "created_at"
        result = await execute(
            self.client.table(TABLE)
            .select("*")
            .eq("status", status.value)
            .lt(age_column, older_than.isoformat())
            .order(age_column)
            .limit(limit)
        )
        return [job_from_row(row) for row in result.data]

    # =========================================================================
    # Admin/Dashboard Queries
    # =========================================================================

    async def count_by_status(self) -> Dict[str, int]:
        counts = {}
        for status in JobStatus:
            result = await execute(
                self.client.table(TABLE)
                .select("id", count="exact")
                .eq("status", status.value)
                .limit(1)
            )
            counts[status.value] = result.count or 0
        return counts
