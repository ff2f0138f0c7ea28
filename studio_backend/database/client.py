"""
Supabase Client Configuration

Provides the admin client used by workers and the job store backends.
"""

import asyncio
from functools import lru_cache

from supabase import create_client, Client

from studio_backend.config import config
from studio_backend.utils.logging import get_logger


logger = get_logger("database")


class SupabaseClientError(Exception):
    """Raised when Supabase client cannot be initialized."""
    pass


@lru_cache(maxsize=1)
def get_supabase_admin_client() -> Client:
    """
    Get Supabase client with service role key (admin access).

    Use this for:
    - The job store and queue backends
    - Background job workers
    - Provider adapters writing records and storage objects

    WARNING: This client bypasses Row Level Security!
    Every query made through it must filter on owner_scope itself.
    """
    if not config.SUPABASE_URL:
        raise SupabaseClientError(
            "SUPABASE_URL is not configured. "
            "Set it in your .env file or environment variables."
        )

    if not config.SUPABASE_SERVICE_KEY:
        raise SupabaseClientError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set it in your .env file or environment variables."
        )

    return create_client(
        config.SUPABASE_URL,
        config.SUPABASE_SERVICE_KEY
    )


async def execute(query):
    """
    Run a PostgREST query builder in a worker thread.

    supabase-py's sync client blocks on HTTP; awaiting it here keeps the
    event loop free for timeouts, fan-out and lease heartbeats.
    """
    return await asyncio.to_thread(query.execute)


def verify_supabase_connection() -> bool:
    """
    Verify that Supabase is configured and the job tables are reachable.

    Returns:
        True if connection successful, False otherwise.
    """
    try:
        client = get_supabase_admin_client()
        client.table("pipeline_jobs").select("id").limit(1).execute()
        return True
    except Exception as e:
        logger.error("Supabase connection failed", error=str(e))
        return False
