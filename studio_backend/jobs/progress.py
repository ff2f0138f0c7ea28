"""
Progress reporting for running jobs.

Pipelines report progress without caring whether the write succeeds: a
lost snapshot only makes a polling client see an older step for a few
seconds, which must never fail the job.
"""

from typing import Dict, Optional

from studio_backend.jobs.models import ProgressSnapshot
from studio_backend.jobs.store import JobStore
from studio_backend.utils.logging import job_logger


class ProgressReporter:
    """Writes progress snapshots, keeping `current` non-decreasing per job."""

    def __init__(self, store: JobStore):
        self.store = store
        self._highest: Dict[str, int] = {}

    async def report(
        self,
        job_id: str,
        current: int,
        total: int,
        step: str,
        details: Optional[str] = None,
    ) -> bool:
        """
        Store a snapshot; returns whether it was written.

        Snapshots behind the highest `current` already reported for the
        job are dropped. Store errors are logged, never raised.
        """
        highest = self._highest.get(job_id)
        if highest is not None and current < highest:
            job_logger.debug(
                "Dropped out-of-order progress",
                job_id=job_id, current=current, highest=highest,
            )
            return False
        self._highest[job_id] = current

        snapshot = ProgressSnapshot(
            current=current,
            total=total,
            step=step,
            details=details,
        )
        try:
            return await self.store.update_progress(job_id, snapshot)
        except Exception as e:
            job_logger.warning(
                "Progress update failed",
                job_id=job_id, step=step, error=str(e),
            )
            return False

    def forget(self, job_id: str):
        """Drop in-memory state once a job reaches a terminal state."""
        self._highest.pop(job_id, None)
