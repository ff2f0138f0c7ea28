"""
Supabase Database Layer

Client factory plus the Supabase backends of the job store and queue.
"""

from .client import get_supabase_admin_client, verify_supabase_connection, SupabaseClientError
from .jobs import SupabaseJobStore
from .queue import SupabaseJobQueue

__all__ = [
    "get_supabase_admin_client",
    "verify_supabase_connection",
    "SupabaseClientError",
    "SupabaseJobStore",
    "SupabaseJobQueue",
]
