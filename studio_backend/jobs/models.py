"""Job record, queue message and progress models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Lifecycle of a job: pending -> processing -> completed | failed."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Forward-only. Payload validation failures are rejected before a job
# exists, so nothing goes from pending straight to a terminal state.
ALLOWED_TRANSITIONS: Dict[JobStatus, Tuple[JobStatus, ...]] = {
    JobStatus.PENDING: (JobStatus.PROCESSING,),
    JobStatus.PROCESSING: (JobStatus.COMPLETED, JobStatus.FAILED),
    JobStatus.COMPLETED: (),
    JobStatus.FAILED: (),
}


def allowed_sources(to_status: JobStatus) -> Tuple[JobStatus, ...]:
    """Statuses a job may be in for a move to `to_status` to be legal."""
    return tuple(
        source for source, targets in ALLOWED_TRANSITIONS.items()
        if to_status in targets
    )


class JobType(str, Enum):
    """Selects the pipeline definition that runs a job."""
    ANALYZE_COMPETITORS = "analyze_competitors"
    GENERATE_PERSONAS = "generate_personas"
    GENERATE_AUDIENCE_IMAGES = "generate_audience_images"
    GENERATE_ADS = "generate_ads"
    GENERATE_UGC_VIDEO = "generate_ugc_video"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressSnapshot(BaseModel):
    """What a polling client sees while a job is processing."""
    current: int = Field(ge=0)
    total: int = Field(ge=0)
    step: str
    details: Optional[str] = None


class Job(BaseModel):
    """One tracked unit of asynchronous, multi-step work."""
    id: str
    type: JobType
    owner_scope: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    progress: Optional[ProgressSnapshot] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def status_view(self) -> Dict[str, Any]:
        """Read-side representation returned by the status API."""
        view: Dict[str, Any] = {
            "job_id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if self.status == JobStatus.PROCESSING and self.progress is not None:
            view["progress"] = self.progress.model_dump()
        if self.status == JobStatus.COMPLETED:
            view["result"] = self.result
        if self.status == JobStatus.FAILED:
            view["error"] = self.error
        return view


class QueueMessage(BaseModel):
    """A delivery of a job reference; owned by the queue, not the job store."""
    id: int
    job_id: str
    type: JobType
    attempt_count: int = 0
    lease_token: Optional[str] = None
    visible_at: Optional[datetime] = None
