"""
FastAPI application for the studio pipeline API.

This module sets up the main FastAPI app with routes, middleware,
job backends and the optional in-process worker.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studio_backend.config import config
from studio_backend.jobs.backends import open_backends
from studio_backend.jobs.errors import NotFoundError, ValidationError
from studio_backend.jobs.service import JobService
from studio_backend.jobs.worker import start_job_worker, stop_job_worker
from studio_backend.providers import build_services
from studio_backend.routes.admin import router as admin_router
from studio_backend.routes.jobs import router as jobs_router
from studio_backend.utils.logging import api_logger, configure_logging


# Create FastAPI app
app = FastAPI(
    title="Studio Pipeline API",
    description="Background jobs for competitor analysis, personas, audience images, ads and UGC video",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware for dashboard access
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)

app.include_router(jobs_router)
app.include_router(admin_router)


@app.get("/")
async def api_info():
    """Basic API information."""
    return {
        "name": "Studio Pipeline API",
        "version": "1.0.0",
        "endpoints": {
            "submit_job": "POST /jobs",
            "job_status": "GET /jobs/{job_id}",
            "list_jobs": "GET /jobs",
            "queue": "GET /admin/queue",
            "health": "GET /health",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint - must be fast and never fail."""
    return {
        "status": "healthy",
        "job_backend": config.JOB_BACKEND,
        "backend_ready": getattr(app.state, "job_service", None) is not None,
    }


# ===== Error Handlers =====

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "detail": str(exc), "type": type(exc).__name__},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "detail": exc.errors(), "type": "ValidationError"},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=404,
        content={"error": "Not found", "detail": str(exc), "type": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    api_logger.error("Unhandled error", path=request.url.path, error=str(exc), type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if config.DEBUG else "An error occurred",
            "type": type(exc).__name__
        }
    )


# ===== Startup / Shutdown =====

@app.on_event("startup")
async def startup_event():
    """Open job backends and, if enabled, start the in-process worker."""
    configure_logging(config.LOG_LEVEL)
    api_logger.info(
        "Studio API starting",
        environment=config.ENVIRONMENT,
        job_backend=config.JOB_BACKEND,
        auth_required=config.auth_required,
    )

    if config.DEV_MODE and not config.api_keys_list:
        api_logger.warning("DEV MODE: authentication bypassed (no API keys configured)")

    backends = await open_backends(config)
    app.state.backends = backends
    app.state.job_service = JobService(backends.store, backends.queue)

    if config.ENABLE_JOB_WORKER:
        start_job_worker(backends.store, backends.queue, build_services(config))
    else:
        api_logger.info("In-process worker disabled; run studio_backend.jobs.run_worker")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    stop_job_worker()

    backends = getattr(app.state, "backends", None)
    if backends is not None:
        await backends.close()
    app.state.job_service = None
    api_logger.info("Studio API stopped")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "studio_backend.api.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower()
    )
