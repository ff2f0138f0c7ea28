"""
Admin API Routes

Operational endpoints:
- Job and queue counts
- Error logs from the in-memory buffer
- On-demand reconciliation sweep
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from studio_backend.config import config
from studio_backend.jobs.reconcile import reconcile
from studio_backend.jobs.service import JobService
from studio_backend.jobs.worker import get_worker
from studio_backend.routes.jobs import get_job_service
from studio_backend.security import require_auth
from studio_backend.utils.logging import LogLevel, get_log_buffer, get_logger

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[require_auth])
logger = get_logger("admin")


# ===== Queue =====

@router.get("/queue")
async def get_queue_overview(service: JobService = Depends(get_job_service)):
    """
    Job counts by status plus queue depth.

    `queue.leased` is the number of messages a worker currently holds;
    `queue.max_attempts` is the highest delivery count in the queue.
    """
    try:
        stats = await service.get_stats()
    except Exception as e:
        logger.error("Failed to fetch queue stats", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))

    worker = get_worker()
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "backend": config.JOB_BACKEND,
        **stats,
        "in_process_worker": {
            "running": worker is not None,
            "current_jobs": worker.current_jobs if worker else [],
        },
    }


@router.post("/reconcile")
async def run_reconcile(service: JobService = Depends(get_job_service)):
    """Run one reconciliation sweep now."""
    report = await reconcile(service.store, service.queue)
    logger.info("Reconciliation run by admin", **report.to_dict())
    return report.to_dict()


# ===== Logs =====

@router.get("/logs")
async def get_logs(
    limit: int = Query(100, ge=1, le=500),
    level: Optional[str] = Query(None, description="Filter by level (debug, info, warning, error, critical)"),
    source: Optional[str] = Query(None, description="Filter by source (jobs, queue, pipeline, providers, api)"),
    job_id: Optional[str] = Query(None, description="Only entries logged for this job"),
):
    """Get recent log entries from the in-memory buffer."""
    level_filter = None
    if level:
        try:
            level_filter = LogLevel(level.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid log level: {level}")

    log_buffer = get_log_buffer()
    return {
        "logs": log_buffer.get_recent(limit=limit, level=level_filter, source=source, job_id=job_id),
        "stats": log_buffer.get_stats(),
    }


@router.get("/logs/errors")
async def get_error_logs(limit: int = Query(50, ge=1, le=200)):
    """Get recent error and critical log entries."""
    return {"errors": get_log_buffer().get_errors(limit=limit)}


@router.post("/logs/clear")
async def clear_logs():
    """Clear the in-memory log buffer."""
    get_log_buffer().clear()
    logger.info("Log buffer cleared by admin")
    return {"status": "cleared"}
