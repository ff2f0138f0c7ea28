"""
Job record store interface.

The store owns a job's business state. Backends only implement the
storage primitives; the state machine rules (legal sources, the fields
each target status sets or clears) live here so every backend enforces
them the same way.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from studio_backend.jobs.errors import InvalidTransitionError, NotFoundError, ValidationError
from studio_backend.jobs.models import (
    Job,
    JobStatus,
    JobType,
    ProgressSnapshot,
    allowed_sources,
    utcnow,
)
from studio_backend.jobs.payloads import validate_payload


def new_job_id() -> str:
    return str(uuid.uuid4())


def transition_fields(
    to_status: JobStatus,
    patch: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Column values written when a job enters `to_status`.

    Raises:
        ValueError: a terminal target without its required field
    """
    patch = patch or {}
    unknown = set(patch) - {"result", "error"}
    if unknown:
        raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")

    now = now or utcnow()
    fields: Dict[str, Any] = {"status": to_status, "updated_at": now}

    if to_status == JobStatus.PROCESSING:
        fields["started_at"] = now
    elif to_status == JobStatus.COMPLETED:
        if patch.get("result") is None:
            raise ValueError("A completed job needs a result")
        fields["result"] = patch["result"]
        fields["error"] = None
    elif to_status == JobStatus.FAILED:
        if not patch.get("error"):
            raise ValueError("A failed job needs an error message")
        fields["error"] = str(patch["error"])
        fields["result"] = None

    if to_status.is_terminal:
        fields["completed_at"] = now
        fields["progress"] = None
        fields["progress_current"] = None

    return fields


def _decode(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def job_from_row(row: Dict[str, Any]) -> Job:
    """Build a Job from a stored row; JSON columns may arrive as text."""
    progress = _decode(row.get("progress"))
    return Job(
        id=row["id"],
        type=row["type"],
        owner_scope=row["owner_scope"],
        payload=_decode(row.get("payload")) or {},
        status=row["status"],
        progress=ProgressSnapshot(**progress) if progress else None,
        result=_decode(row.get("result")),
        error=row.get("error"),
        created_at=row["created_at"],
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
        updated_at=row.get("updated_at"),
    )


class JobStore(ABC):
    """
    Persistent record of jobs.

    Usage:
        async with SqliteJobStore(db) as store:
            job = await store.create(JobType.GENERATE_ADS, "project-1", payload)
            job = await store.transition(job.id, JobStatus.PROCESSING)
    """

    async def open(self):
        """Acquire connections; a no-op for backends without any."""

    async def close(self):
        """Release connections."""

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def create(
        self,
        job_type: Any,
        owner_scope: str,
        payload: Dict[str, Any],
    ) -> Job:
        """
        Validate the payload and insert a pending job.

        Raises:
            ValidationError: unknown type or payload failing its schema
        """
        parsed = validate_payload(job_type, payload)
        if not owner_scope or not owner_scope.strip():
            raise ValidationError("owner_scope is required")

        now = utcnow()
        job = Job(
            id=new_job_id(),
            type=JobType(job_type),
            owner_scope=owner_scope.strip(),
            payload=parsed.model_dump(mode="json"),
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        await self._insert(job)
        return job

    async def get(self, job_id: str, owner_scope: str) -> Job:
        """
        Scoped read for API callers.

        Raises:
            NotFoundError: missing id or a job owned by another scope
        """
        job = await self.load(job_id)
        if job is None or job.owner_scope != owner_scope:
            raise NotFoundError(job_id)
        return job

    async def transition(
        self,
        job_id: str,
        to_status: Any,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """
        Move a job forward with a conditional update.

        The update only applies while the stored status is a legal source
        for `to_status`, so two workers racing for the same job cannot
        both win.

        Raises:
            NotFoundError: no job with this id
            InvalidTransitionError: the stored status is not a legal source
        """
        to_status = JobStatus(to_status)
        fields = transition_fields(to_status, patch)
        sources = allowed_sources(to_status)

        job = await self._conditional_update(job_id, sources, fields) if sources else None
        if job is not None:
            return job

        current = await self.load(job_id)
        if current is None:
            raise NotFoundError(job_id)
        raise InvalidTransitionError(job_id, current.status, to_status)

    @abstractmethod
    async def _insert(self, job: Job):
        ...

    @abstractmethod
    async def _conditional_update(
        self,
        job_id: str,
        sources: Sequence[JobStatus],
        fields: Dict[str, Any],
    ) -> Optional[Job]:
        """Apply `fields` only if the job's status is in `sources`."""

    @abstractmethod
    async def load(self, job_id: str) -> Optional[Job]:
        """Unscoped read; for workers only."""

    @abstractmethod
    async def update_progress(self, job_id: str, snapshot: ProgressSnapshot) -> bool:
        """
        Store a progress snapshot.

        Returns False when the job is not processing or already holds a
        snapshot with a higher `current`.
        """

    @abstractmethod
    async def list_jobs(
        self,
        owner_scope: str,
        status: Optional[JobStatus] = None,
        limit: int = 20,
    ) -> List[Job]:
        """Most recent jobs of a scope, newest first."""

    @abstractmethod
    async def find_stale(
        self,
        status: JobStatus,
        older_than: datetime,
        limit: int = 100,
    ) -> List[Job]:
        """
        Jobs stuck in `status` since before `older_than`.

        Pending jobs are aged by created_at, processing jobs by started_at.
        """

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        ...
