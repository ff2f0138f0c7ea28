"""
Jobs API Routes

Submit pipeline jobs and poll their status. Every read is scoped to the
caller's owner scope (project); a job from another scope is a 404.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from pydantic import BaseModel

from studio_backend.jobs.errors import NotFoundError, ValidationError
from studio_backend.jobs.models import JobStatus
from studio_backend.jobs.service import JobService
from studio_backend.security import require_auth
from studio_backend.utils.logging import api_logger


router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[require_auth])


# =============================================================================
# Request / Response Models
# =============================================================================

class SubmitJobRequest(BaseModel):
    """Request to start a pipeline job."""
    type: str
    owner_scope: str = ""
    payload: Any = None


class SubmitJobResponse(BaseModel):
    """Response after queuing a job."""
    job_id: str
    status: str


class JobListResponse(BaseModel):
    jobs: List[dict]
    count: int


# =============================================================================
# Dependencies
# =============================================================================

def get_job_service(request: Request) -> JobService:
    service = getattr(request.app.state, "job_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Job backend is not ready")
    return service


def get_owner_scope(
    x_owner_scope: Optional[str] = Header(None, alias="X-Owner-Scope"),
    owner_scope: Optional[str] = Query(None),
) -> str:
    scope = (x_owner_scope or owner_scope or "").strip()
    if not scope:
        raise HTTPException(
            status_code=400,
            detail="Owner scope required. Provide X-Owner-Scope header or owner_scope query parameter.",
        )
    return scope


# =============================================================================
# Routes
# =============================================================================

@router.post("", response_model=SubmitJobResponse, status_code=202)
async def submit_job(
    body: SubmitJobRequest,
    service: JobService = Depends(get_job_service),
):
    """
    Queue a pipeline job.

    The job is created pending and processed in the background; poll
    GET /jobs/{job_id} for progress and the result.
    """
    try:
        job = await service.submit(body.type, body.owner_scope, body.payload)
    except ValidationError as e:
        api_logger.info("Rejected job submission", type=body.type, error=str(e))
        raise HTTPException(status_code=400, detail=str(e))

    return SubmitJobResponse(job_id=job.id, status=job.status.value)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = Query(None),
    limit: int = Query(default=20, ge=1, le=100),
    owner_scope: str = Depends(get_owner_scope),
    service: JobService = Depends(get_job_service),
):
    """Recent jobs of the caller's scope, newest first."""
    jobs = await service.list_jobs(owner_scope, status=status, limit=limit)
    return JobListResponse(jobs=jobs, count=len(jobs))


@router.get("/{job_id}")
async def get_job_status(
    job_id: str,
    response: Response,
    owner_scope: str = Depends(get_owner_scope),
    service: JobService = Depends(get_job_service),
):
    """
    Get a job's status.

    While the job is pending or processing the response carries a
    Retry-After header with the polling interval.
    """
    try:
        view = await service.get_status(job_id, owner_scope)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    retry_after = service.retry_after(view)
    if retry_after is not None:
        response.headers["Retry-After"] = str(retry_after)
    return view
