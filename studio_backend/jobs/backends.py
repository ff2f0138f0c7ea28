"""
Store and queue construction for the configured job backend.
"""

import os
from dataclasses import dataclass

from studio_backend.jobs.database import JobDatabase, SqliteJobStore
from studio_backend.jobs.queue import JobQueue, SqliteJobQueue
from studio_backend.jobs.store import JobStore
from studio_backend.utils.logging import job_logger


@dataclass
class Backends:
    store: JobStore
    queue: JobQueue

    async def close(self):
        await self.queue.close()
        await self.store.close()


def queue_options(config) -> dict:
    return {
        "visibility_timeout": config.QUEUE_VISIBILITY_TIMEOUT_SECONDS,
        "max_retries": config.QUEUE_MAX_RETRIES,
        "retry_delay": config.QUEUE_RETRY_DELAY_SECONDS,
    }


async def open_backends(config) -> Backends:
    """
    Open the job store and queue named by JOB_BACKEND.

    The sqlite backend keeps both tables in one database file so that
    the web process and a standalone worker on the same host share them.
    """
    if config.JOB_BACKEND == "supabase":
        from studio_backend.database import SupabaseJobQueue, SupabaseJobStore

        backends = Backends(SupabaseJobStore(), SupabaseJobQueue(**queue_options(config)))
    else:
        storage_path = os.getenv("STORAGE_PATH")
        db_path = (
            os.path.join(storage_path, os.path.basename(config.JOB_DB_PATH))
            if storage_path else config.JOB_DB_PATH
        )
        db = JobDatabase(db_path)
        backends = Backends(SqliteJobStore(db), SqliteJobQueue(db, **queue_options(config)))

    await backends.store.open()
    await backends.queue.open()
    job_logger.info("Job backend ready", backend=config.JOB_BACKEND)
    return backends
