"""
Step executor: runs a pipeline definition against one job.

A pipeline is an ordered list of steps. Each step is either fatal (its
failure fails the job) or non-fatal (its failure becomes a warning on
the result). Steps run strictly in order; fan-out steps run their
per-item calls concurrently through `fan_out`.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    TypeVar,
)

from studio_backend.config import config
from studio_backend.jobs.errors import (
    InvalidTransitionError,
    StepFailure,
    StepTimeout,
    StepWarning,
    ValidationError,
)
from studio_backend.jobs.models import Job, JobStatus
from studio_backend.jobs.progress import ProgressReporter
from studio_backend.jobs.store import JobStore
from studio_backend.utils.logging import pipeline_logger


T = TypeVar("T")
R = TypeVar("R")

NO_OUTPUT_MESSAGE = "Pipeline produced no usable output"


@dataclass
class Step:
    """One stage of a pipeline."""
    name: str
    label: str
    action: Callable[["StepContext"], Awaitable[Optional[Dict[str, Any]]]]
    fatal: bool = True
    timeout: Optional[float] = None


@dataclass
class StepContext:
    """
    State shared by the steps of one job run.

    Steps read the validated payload and earlier steps' outputs from
    `data`, and return a dict that is merged into `data`.
    """
    job: Job
    payload: Any
    services: Any
    reporter: ProgressReporter
    concurrency: int = 3
    data: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    current: int = 0
    total: int = 0
    step_name: str = ""

    @property
    def job_id(self) -> str:
        return self.job.id

    @property
    def owner_scope(self) -> str:
        return self.job.owner_scope

    def warn(self, message: str):
        self.warnings.append(message)
        pipeline_logger.warning(message, job_id=self.job.id, step=self.step_name)

    async def report_details(self, details: str):
        """Refine the current step's progress without moving `current`."""
        await self.reporter.report(
            self.job.id, self.current, self.total, self.step_name, details
        )


@dataclass
class PipelineResult:
    """Outcome of one executor run."""
    job_id: str
    status: Optional[JobStatus] = None
    discarded: bool = False
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value if self.status else None,
            "discarded": self.discarded,
            "error": self.error,
            "warnings": self.warnings,
            "duration_seconds": self.duration_seconds,
        }


async def run_with_timeout(awaitable: Awaitable[T], seconds: Optional[float], what: str) -> T:
    """
    Await with an optional time budget.

    Raises:
        StepTimeout: the budget ran out
    """
    if not seconds:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise StepTimeout(f"{what} timed out after {seconds:g}s")


async def fan_out(
    context: StepContext,
    items: Iterable[T],
    fn: Callable[[T], Awaitable[Optional[R]]],
    concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    describe: Optional[Callable[[T], str]] = None,
) -> List[R]:
    """
    Run `fn` over items concurrently and keep what succeeded.

    Each failed or timed-out item becomes one warning on the context;
    results of the successful items come back in input order. Items
    whose call returns None are dropped without a warning.
    """
    items = list(items)
    if not items:
        return []

    describe = describe or str
    semaphore = asyncio.Semaphore(max(1, concurrency or context.concurrency))
    finished = 0

    async def call(item: T):
        nonlocal finished
        async with semaphore:
            try:
                return await run_with_timeout(fn(item), timeout, describe(item))
            finally:
                finished += 1
                await context.report_details(f"{finished}/{len(items)} processed")

    outcomes = await asyncio.gather(*(call(item) for item in items), return_exceptions=True)

    successes: List[R] = []
    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, (StepFailure, StepWarning)):
            context.warn(str(outcome))
        elif isinstance(outcome, Exception):
            context.warn(f"{describe(item)} failed: {outcome}")
        elif outcome is not None:
            successes.append(outcome)
    return successes


class StepExecutor:
    """
    Drives a job through its pipeline and records the terminal state.

    Usage:
        executor = StepExecutor(store, services)
        outcome = await executor.run(job, PIPELINES[job.type])
    """

    def __init__(
        self,
        store: JobStore,
        services: Any = None,
        reporter: Optional[ProgressReporter] = None,
        fanout_concurrency: Optional[int] = None,
    ):
        self.store = store
        self.services = services
        self.reporter = reporter or ProgressReporter(store)
        self.fanout_concurrency = fanout_concurrency or config.FANOUT_CONCURRENCY

    async def run(self, job: Job, definition) -> PipelineResult:
        start_time = time.time()

        # A redelivered message for a job that already started or finished
        # must not run the pipeline again.
        current = await self.store.load(job.id)
        if current is None or current.status != JobStatus.PENDING:
            pipeline_logger.info(
                "Discarding delivery for job that is not pending",
                job_id=job.id,
                status=current.status.value if current else "missing",
            )
            return PipelineResult(job.id, status=current.status if current else None, discarded=True)

        try:
            job = await self.store.transition(job.id, JobStatus.PROCESSING)
        except InvalidTransitionError as e:
            pipeline_logger.info("Lost claim race; discarding", job_id=job.id, reason=str(e))
            return PipelineResult(job.id, status=e.from_status, discarded=True)

        pipeline_logger.info("Job started", job_id=job.id, type=job.type.value)

        try:
            payload = definition.parse_payload(job.payload)
        except ValidationError as e:
            return await self._finish_failed(job, str(e), [], start_time)

        context = self._context(job, payload)

        try:
            steps = definition.build_steps(payload, self.services)
        except Exception as e:
            return await self._fail_pipeline(
                definition, context, f"Pipeline setup failed: {e}", start_time
            )
        context.total = len(steps)

        for index, step in enumerate(steps):
            context.current = index
            context.step_name = step.name
            await self.reporter.report(job.id, index, len(steps), step.name)

            # A step that does not succeed contributes nothing to `data`
            before = dict(context.data)
            try:
                output = await run_with_timeout(step.action(context), step.timeout, step.label)
            except StepWarning as w:
                context.data = before
                context.warn(str(w))
                continue
            except Exception as e:
                context.data = before
                message = str(e) if isinstance(e, StepFailure) else f"{step.label} failed: {e}"
                if step.fatal:
                    pipeline_logger.error(
                        "Fatal step failed",
                        job_id=job.id, step=step.name, error=message,
                    )
                    return await self._fail_pipeline(definition, context, message, start_time)
                context.warn(message)
                continue

            if output:
                context.data.update(output)

        context.current = len(steps)
        context.step_name = "done"
        await self.reporter.report(job.id, len(steps), len(steps), "done")

        try:
            produced = definition.has_output(context)
            result = dict(definition.build_result(context)) if produced else None
        except Exception as e:
            return await self._fail_pipeline(
                definition, context, f"Building the result failed: {e}", start_time
            )

        if result is None:
            error = "; ".join(context.warnings) or NO_OUTPUT_MESSAGE
            return await self._fail_pipeline(definition, context, error, start_time)

        result["warnings"] = list(context.warnings)
        return await self._finish(
            job, JobStatus.COMPLETED, {"result": result}, context.warnings, start_time
        )

    async def notify_failed(self, job: Job, definition, error: str):
        """
        Run a pipeline's failure hook for a job failed outside `run`
        (exhausted deliveries, the reconciliation sweep).
        """
        try:
            payload = definition.parse_payload(job.payload)
        except ValidationError as e:
            pipeline_logger.warning("Skipping failure hook", job_id=job.id, reason=str(e))
            return
        await self._run_failure_hook(definition, self._context(job, payload), error)

    def _context(self, job: Job, payload: Any) -> StepContext:
        return StepContext(
            job=job,
            payload=payload,
            services=self.services,
            reporter=self.reporter,
            concurrency=self.fanout_concurrency,
        )

    async def _run_failure_hook(self, definition, context: StepContext, error: str):
        # Hook errors never change the job outcome
        try:
            await definition.on_failed(context, error)
        except Exception as e:
            pipeline_logger.error(
                "Pipeline failure hook failed",
                job_id=context.job_id, error=str(e),
            )

    async def _fail_pipeline(
        self,
        definition,
        context: StepContext,
        error: str,
        start_time: float,
    ) -> PipelineResult:
        await self._run_failure_hook(definition, context, error)
        return await self._finish_failed(context.job, error, context.warnings, start_time)

    async def _finish_failed(
        self,
        job: Job,
        error: str,
        warnings: List[str],
        start_time: float,
    ) -> PipelineResult:
        return await self._finish(job, JobStatus.FAILED, {"error": error}, warnings, start_time)

    async def _finish(
        self,
        job: Job,
        status: JobStatus,
        patch: Dict[str, Any],
        warnings: List[str],
        start_time: float,
    ) -> PipelineResult:
        self.reporter.forget(job.id)
        duration = time.time() - start_time

        try:
            finished = await self.store.transition(job.id, status, patch)
        except InvalidTransitionError as e:
            # Someone else (the reconciliation sweep) already closed the job.
            pipeline_logger.error(
                "Could not record pipeline outcome",
                job_id=job.id, wanted=status.value, error=str(e),
            )
            return PipelineResult(
                job.id,
                status=JobStatus(e.from_status),
                error=str(e),
                warnings=list(warnings),
                duration_seconds=duration,
            )

        pipeline_logger.info(
            "Job finished",
            job_id=job.id,
            status=finished.status.value,
            warnings=len(warnings),
            seconds=round(duration, 2),
        )
        return PipelineResult(
            job.id,
            status=finished.status,
            result=finished.result,
            error=finished.error,
            warnings=list(warnings),
            duration_seconds=duration,
        )
