"""
Job orchestration for the generation pipelines.

Components:
- JobStore: job records and their state machine (SQLite or Supabase)
- JobQueue: durable competing-consumer queue with visibility timeouts
- StepExecutor: runs a pipeline definition against one job
- JobService: create-then-enqueue submission and scoped status reads
- JobWorker (studio_backend.jobs.worker): polls the queue and runs jobs

Usage:
    # In an API endpoint - submit a job
    job = await service.submit("analyze_competitors", project_id, payload)

    # Check job status
    view = await service.get_status(job.id, project_id)
"""

from studio_backend.jobs.errors import (
    JobError,
    ValidationError,
    NotFoundError,
    InvalidTransitionError,
    StepFailure,
    StepTimeout,
    StepWarning,
    RedeliveryExhausted,
)
from studio_backend.jobs.models import (
    Job,
    JobStatus,
    JobType,
    ProgressSnapshot,
    QueueMessage,
    TERMINAL_STATUSES,
)
from studio_backend.jobs.store import JobStore
from studio_backend.jobs.queue import JobQueue
from studio_backend.jobs.database import JobDatabase, SqliteJobStore
from studio_backend.jobs.queue import SqliteJobQueue
from studio_backend.jobs.progress import ProgressReporter
from studio_backend.jobs.executor import (
    Step,
    StepContext,
    StepExecutor,
    PipelineResult,
    fan_out,
    run_with_timeout,
)
from studio_backend.jobs.service import JobService
from studio_backend.jobs.backends import Backends, open_backends

__all__ = [
    # Errors
    "JobError",
    "ValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "StepFailure",
    "StepTimeout",
    "StepWarning",
    "RedeliveryExhausted",

    # Models
    "Job",
    "JobStatus",
    "JobType",
    "ProgressSnapshot",
    "QueueMessage",
    "TERMINAL_STATUSES",

    # Storage
    "JobStore",
    "JobQueue",
    "JobDatabase",
    "SqliteJobStore",
    "SqliteJobQueue",
    "Backends",
    "open_backends",

    # Execution
    "ProgressReporter",
    "Step",
    "StepContext",
    "StepExecutor",
    "PipelineResult",
    "fan_out",
    "run_with_timeout",
    "JobService",
]
