"""
Job submission and status queries, the surface the HTTP routes call.
"""

from typing import Any, Dict, List, Optional

from studio_backend.config import config
from studio_backend.jobs.models import Job, JobStatus, JobType, TERMINAL_STATUSES
from studio_backend.jobs.payloads import parse_job_type
from studio_backend.jobs.queue import JobQueue
from studio_backend.jobs.store import JobStore
from studio_backend.utils.logging import job_logger


class JobService:
    """
    Create-then-enqueue submission and scoped status reads.

    Usage:
        service = JobService(store, queue)
        job = await service.submit("analyze_competitors", "proj_1", {...})
        view = await service.get_status(job.id, "proj_1")
    """

    def __init__(self, store: JobStore, queue: JobQueue, poll_interval: Optional[int] = None):
        self.store = store
        self.queue = queue
        self.poll_interval = poll_interval or config.STATUS_POLL_INTERVAL_SECONDS

    async def submit(self, job_type: Any, owner_scope: str, payload: Any) -> Job:
        """
        Validate, persist and enqueue a job.

        The job record is written before the queue message. If the enqueue
        fails the job stays pending and the reconciliation sweep enqueues
        it later, so the caller still gets the job id.

        Raises:
            ValidationError: unknown type, bad payload or empty scope
        """
        job_type = parse_job_type(job_type)
        job = await self.store.create(job_type, owner_scope, payload)

        try:
            await self.queue.enqueue(job.type, job.id)
        except Exception as e:
            job_logger.error(
                "Enqueue failed; job left for reconciliation",
                job_id=job.id, error=str(e),
            )
        else:
            job_logger.info("Job submitted", job_id=job.id, type=job.type.value, owner_scope=owner_scope)

        return job

    async def get_status(self, job_id: str, owner_scope: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: no such job in this scope
        """
        job = await self.store.get(job_id, owner_scope)
        return job.status_view()

    async def list_jobs(
        self,
        owner_scope: str,
        status: Optional[JobStatus] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        jobs = await self.store.list_jobs(owner_scope, status=status, limit=limit)
        return [job.status_view() for job in jobs]

    def retry_after(self, view: Dict[str, Any]) -> Optional[int]:
        """Seconds a client should wait before polling again; None once terminal."""
        if JobStatus(view["status"]) in TERMINAL_STATUSES:
            return None
        return self.poll_interval

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "jobs": await self.store.count_by_status(),
            "queue": await self.queue.stats(),
            "job_types": [t.value for t in JobType],
        }
