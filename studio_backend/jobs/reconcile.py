"""
Reconciliation sweep between the job store and the queue.

Jobs are written before their queue message, and a worker that dies
mid-run leaves its job in processing. The sweep repairs both:
pending jobs with no message get one, and processing jobs with no
message (nobody can redeliver them) are failed.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from studio_backend.config import config
from studio_backend.jobs.errors import InvalidTransitionError
from studio_backend.jobs.models import JobStatus, utcnow
from studio_backend.jobs.queue import JobQueue
from studio_backend.jobs.store import JobStore
from studio_backend.utils.logging import job_logger


ABANDONED_MESSAGE = "processing abandoned: no worker holds this job"


@dataclass
class ReconcileReport:
    requeued: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"requeued": self.requeued, "failed": self.failed}


async def reconcile(
    store: JobStore,
    queue: JobQueue,
    pending_after: Optional[float] = None,
    processing_after: Optional[float] = None,
) -> ReconcileReport:
    """Run one sweep and report which jobs were touched."""
    pending_after = pending_after if pending_after is not None else config.RECONCILE_PENDING_AFTER_SECONDS
    processing_after = (
        processing_after if processing_after is not None else config.STALE_PROCESSING_AFTER_SECONDS
    )

    report = ReconcileReport()
    now = utcnow()
    queued = set(await queue.queued_job_ids())

    for job in await store.find_stale(JobStatus.PENDING, now - timedelta(seconds=pending_after)):
        if job.id in queued:
            continue
        if await queue.enqueue(job.type, job.id):
            report.requeued.append(job.id)
            job_logger.warning("Re-enqueued pending job with no queue message", job_id=job.id)

    for job in await store.find_stale(JobStatus.PROCESSING, now - timedelta(seconds=processing_after)):
        if job.id in queued:
            continue
        try:
            await store.transition(job.id, JobStatus.FAILED, {"error": ABANDONED_MESSAGE})
        except InvalidTransitionError:
            # Finished between the scan and the update.
            continue
        report.failed.append(job.id)
        job_logger.error("Failed abandoned processing job", job_id=job.id)

    if report.requeued or report.failed:
        job_logger.info("Reconciliation sweep", **report.to_dict())
    return report
