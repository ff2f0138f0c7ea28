"""
Background worker for pipeline jobs.
Polls the queue and runs each job through its pipeline definition.
"""

import asyncio
import contextlib
from typing import Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from studio_backend.config import config
from studio_backend.jobs.errors import InvalidTransitionError, RedeliveryExhausted
from studio_backend.jobs.executor import PipelineResult, StepExecutor
from studio_backend.jobs.models import Job, JobStatus, QueueMessage, TERMINAL_STATUSES
from studio_backend.jobs.queue import JobQueue
from studio_backend.jobs.reconcile import reconcile
from studio_backend.jobs.store import JobStore
from studio_backend.pipelines import PIPELINES, PipelineDefinition
from studio_backend.utils.logging import job_logger


class JobWorker:
    """
    Background worker that processes pipeline jobs.

    Every poll interval it drains the queue, one message at a time per
    scheduler instance; up to `concurrency` instances run side by side.
    A reconciliation sweep runs on its own interval.

    Message handling is at-least-once: a message is acked only after the
    job reached a terminal state (or was found to need no work), and a
    redelivered message for a job that already started is discarded.
    """

    def __init__(
        self,
        store: JobStore,
        queue: JobQueue,
        services=None,
        pipelines: Optional[Dict] = None,
        poll_interval_seconds: Optional[int] = None,
        concurrency: Optional[int] = None,
        reconcile_interval_seconds: Optional[int] = None,
    ):
        self.store = store
        self.queue = queue
        self.pipelines: Dict = pipelines if pipelines is not None else PIPELINES
        self.executor = StepExecutor(store, services)
        self.poll_interval = poll_interval_seconds or config.WORKER_POLL_INTERVAL_SECONDS
        self.concurrency = concurrency or config.WORKER_CONCURRENCY
        self.reconcile_interval = reconcile_interval_seconds or config.RECONCILE_INTERVAL_SECONDS

        self.scheduler = AsyncIOScheduler()
        self._current_job_ids: set = set()

    async def process_jobs(self):
        """
        Main job processing loop.
        Called by the scheduler every poll_interval seconds.
        """
        try:
            while await self.process_next():
                pass
        except Exception as e:
            job_logger.error("Worker error", error=str(e))

    async def process_next(self) -> bool:
        """Handle one message; False when the queue had nothing visible."""
        message = await self.queue.dequeue()
        if message is None:
            return False
        await self.handle(message)
        return True

    async def run_until_empty(self) -> List[Optional[PipelineResult]]:
        """Drain the queue in the current task (burst mode and tests)."""
        outcomes = []
        while True:
            message = await self.queue.dequeue()
            if message is None:
                return outcomes
            outcomes.append(await self.handle(message))

    async def handle(self, message: QueueMessage) -> Optional[PipelineResult]:
        job = await self.store.load(message.job_id)

        if job is None:
            job_logger.warning("Queue message for unknown job", job_id=message.job_id)
            await self.queue.ack(message)
            return None

        if job.status in TERMINAL_STATUSES:
            job_logger.info("Redelivered message for finished job", job_id=job.id, status=job.status.value)
            await self.queue.ack(message)
            return PipelineResult(job.id, status=job.status, discarded=True)

        if message.attempt_count > self.queue.max_retries:
            # The lease kept expiring without an ack or nack.
            await self._fail_job(job.id, str(RedeliveryExhausted(job.id, message.attempt_count - 1)))
            await self.queue.ack(message)
            return None

        if job.status == JobStatus.PROCESSING:
            # Another delivery already started this job; the reconciliation
            # sweep fails it if that worker is gone.
            job_logger.info("Duplicate delivery for processing job", job_id=job.id)
            await self.queue.ack(message)
            return PipelineResult(job.id, status=job.status, discarded=True)

        definition: Optional[PipelineDefinition] = self.pipelines.get(job.type)
        if definition is None:
            await self._fail_job(job.id, f"No pipeline registered for {job.type.value}")
            await self.queue.ack(message)
            return None

        self._current_job_ids.add(job.id)
        heartbeat = asyncio.create_task(self._heartbeat(message))
        try:
            outcome = await self.executor.run(job, definition)
        except Exception as e:
            job_logger.error("Job run crashed", job_id=job.id, attempt=message.attempt_count, error=str(e))
            try:
                await self.queue.nack(message)
            except RedeliveryExhausted as exhausted:
                await self._fail_job(job.id, str(exhausted))
            return None
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            self._current_job_ids.discard(job.id)

        await self.queue.ack(message)
        return outcome

    async def _heartbeat(self, message: QueueMessage):
        """Keep the lease alive while the pipeline runs."""
        interval = max(1.0, self.queue.visibility_timeout / 3)
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self.queue.extend(message):
                    job_logger.warning("Lease lost during processing", job_id=message.job_id)
                    return
            except Exception as e:
                job_logger.warning("Lease heartbeat failed", job_id=message.job_id, error=str(e))

    async def _fail_job(self, job_id: str, error: str):
        """Fail a job that will not be processed; pending jobs pass through processing."""
        try:
            job = await self.store.load(job_id)
            if job is not None and job.status == JobStatus.PENDING:
                await self.store.transition(job_id, JobStatus.PROCESSING)
            failed = await self.store.transition(job_id, JobStatus.FAILED, {"error": error})
            job_logger.error("Job failed", job_id=job_id, error=error)
        except InvalidTransitionError as e:
            job_logger.warning("Could not fail job", job_id=job_id, reason=str(e))
            return
        await self._notify_failed(failed, error)

    async def _notify_failed(self, job: Job, error: str):
        definition = self.pipelines.get(job.type)
        if definition is not None:
            await self.executor.notify_failed(job, definition, error)

    async def run_reconcile(self):
        try:
            report = await reconcile(self.store, self.queue)
            for job_id in report.failed:
                job = await self.store.load(job_id)
                if job is not None:
                    await self._notify_failed(job, job.error or "")
        except Exception as e:
            job_logger.error("Reconciliation sweep failed", error=str(e))

    def start(self):
        """Start the background worker"""
        self.scheduler.add_job(
            self.process_jobs,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            id="job_worker",
            name="Process pipeline jobs",
            replace_existing=True,
            max_instances=self.concurrency,
        )
        self.scheduler.add_job(
            self.run_reconcile,
            trigger=IntervalTrigger(seconds=self.reconcile_interval),
            id="job_reconcile",
            name="Reconcile job store and queue",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        job_logger.info(
            "Job worker started",
            poll_interval=self.poll_interval,
            concurrency=self.concurrency,
            reconcile_interval=self.reconcile_interval,
        )

    def shutdown(self):
        """Shutdown the worker"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        job_logger.info("Job worker stopped")

    @property
    def is_processing(self) -> bool:
        return bool(self._current_job_ids)

    @property
    def current_jobs(self) -> List[str]:
        return sorted(self._current_job_ids)


# Global worker instance for the in-process mode
_worker_instance: JobWorker | None = None


def start_job_worker(store: JobStore, queue: JobQueue, services=None) -> JobWorker:
    """
    Start an in-process worker.
    Call this during FastAPI startup when ENABLE_JOB_WORKER is set.
    """
    global _worker_instance

    if _worker_instance is None:
        _worker_instance = JobWorker(store, queue, services)
        _worker_instance.start()
    return _worker_instance


def stop_job_worker():
    """
    Stop the in-process worker.
    Call this during FastAPI shutdown.
    """
    global _worker_instance

    if _worker_instance is not None:
        _worker_instance.shutdown()
        _worker_instance = None


def get_worker() -> JobWorker | None:
    """Get the current worker instance (for status checks)"""
    return _worker_instance
