#!/usr/bin/env python3
"""
Standalone pipeline worker process.

Run this as a separate process from the web server so long pipelines
never hit gunicorn worker timeouts.

Usage:
    python -m studio_backend.jobs.run_worker           # poll forever
    python -m studio_backend.jobs.run_worker --burst   # drain the queue and exit
"""

import argparse
import asyncio
import signal

from studio_backend.config import config
from studio_backend.jobs.backends import open_backends
from studio_backend.jobs.reconcile import reconcile
from studio_backend.jobs.worker import JobWorker
from studio_backend.providers import build_services
from studio_backend.utils.logging import configure_logging, job_logger


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process pipeline jobs")
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Process everything currently queued, then exit",
    )
    return parser.parse_args(argv)


async def main(argv=None):
    """Run the job worker as a standalone process."""
    args = parse_args(argv)
    configure_logging(config.LOG_LEVEL)

    job_logger.info(
        "Starting standalone job worker",
        backend=config.JOB_BACKEND,
        poll_interval=config.WORKER_POLL_INTERVAL_SECONDS,
        concurrency=config.WORKER_CONCURRENCY,
        burst=args.burst,
    )

    backends = await open_backends(config)
    worker = JobWorker(backends.store, backends.queue, build_services(config))

    try:
        if args.burst:
            await reconcile(backends.store, backends.queue)
            outcomes = await worker.run_until_empty()
            job_logger.info("Burst run finished", messages=len(outcomes))
            return

        # Handle shutdown signals gracefully
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, shutdown_event.set)

        worker.start()
        job_logger.info("Worker running. Press Ctrl+C to stop.")

        # Keep running until shutdown signal
        await shutdown_event.wait()
        job_logger.info("Shutdown signal received")

    finally:
        worker.shutdown()
        await backends.close()
        job_logger.info("Worker stopped")


if __name__ == "__main__":
    asyncio.run(main())
