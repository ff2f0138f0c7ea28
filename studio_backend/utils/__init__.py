"""Utility modules for the studio backend."""

from studio_backend.utils.logging import (
    get_logger,
    get_log_buffer,
    configure_logging,
    LogLevel,
    LogEntry,
    AppLogger,
    job_logger,
    queue_logger,
    pipeline_logger,
    provider_logger,
    api_logger,
)

__all__ = [
    "get_logger",
    "get_log_buffer",
    "configure_logging",
    "LogLevel",
    "LogEntry",
    "AppLogger",
    "job_logger",
    "queue_logger",
    "pipeline_logger",
    "provider_logger",
    "api_logger",
]
