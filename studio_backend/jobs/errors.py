"""
Exceptions raised by the job store, queue and step executor.

Routes translate ValidationError to 400 and NotFoundError to 404; the
step executor turns StepFailure into a failed job and StepWarning into an
entry of the job's warnings.
"""

from typing import Any, Dict, List, Optional


class JobError(Exception):
    """Base class for job orchestration errors."""


class ValidationError(JobError):
    """Producer input failed the job type's payload schema."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(JobError):
    """
    Job does not exist or belongs to another owner scope.

    Both cases carry the same message so a caller cannot test for
    other tenants' job ids.
    """

    def __init__(self, job_id: str):
        super().__init__("Job not found")
        self.job_id = job_id


class InvalidTransitionError(JobError):
    """Requested status change would move a job backwards or skip a state."""

    def __init__(self, job_id: str, from_status: Any, to_status: Any):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            f"Job {job_id} cannot move from '{from_value}' to '{to_value}'"
        )
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status


class StepFailure(JobError):
    """A pipeline step failed; fatal steps store this message as Job.error."""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class StepTimeout(StepFailure):
    """An external call exceeded its time budget."""


class StepWarning(JobError):
    """Degraded outcome that is recorded but never aborts the job."""


class RedeliveryExhausted(JobError):
    """The queue gave up on a message; the caller must fail the job."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(f"processing abandoned after {attempts} attempts")
        self.job_id = job_id
        self.attempts = attempts
