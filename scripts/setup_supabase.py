#!/usr/bin/env python3
"""
Supabase Setup Helper for the studio job backend

Verifies the Supabase connection, checks the job tables exist and
prints the SQL to create the ones that are missing.

Usage:
    python scripts/setup_supabase.py
    python scripts/setup_supabase.py --sql    # only print the schema

Requirements:
    - Set SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables
    - Or create a .env file with these values
"""

import sys

from studio_backend.config import config


PIPELINE_JOBS_SQL = """
CREATE TABLE IF NOT EXISTS pipeline_jobs (
    id UUID PRIMARY KEY,
    type TEXT NOT NULL,
    owner_scope TEXT NOT NULL,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    progress JSONB,
    progress_current INTEGER,
    result JSONB,
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_pipeline_jobs_scope
    ON pipeline_jobs (owner_scope, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_pipeline_jobs_status
    ON pipeline_jobs (status, created_at);
"""

JOB_QUEUE_SQL = """
CREATE TABLE IF NOT EXISTS job_queue (
    id BIGSERIAL PRIMARY KEY,
    job_id UUID NOT NULL UNIQUE REFERENCES pipeline_jobs (id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    lease_token TEXT,
    visible_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_job_queue_visible
    ON job_queue (visible_at, id);
"""

REQUIRED_TABLES = {
    "pipeline_jobs": PIPELINE_JOBS_SQL,
    "job_queue": JOB_QUEUE_SQL,
}


def check_supabase_connection():
    """Test the Supabase connection."""
    from studio_backend.database.client import get_supabase_admin_client

    if not config.supabase_configured:
        print("\n❌ Missing Supabase credentials!")
        print("\nSet these environment variables:")
        print("  SUPABASE_URL=https://your-project.supabase.co")
        print("  SUPABASE_SERVICE_KEY=eyJhbGci...")
        return None

    print(f"\n🔗 Connecting to: {config.SUPABASE_URL}")
    try:
        return get_supabase_admin_client()
    except Exception as e:
        print(f"❌ Connection failed: {e}")
        return None


def check_tables(client):
    """Return the job tables that do not exist yet."""
    print("\n📋 Checking required tables:")

    missing = []
    for table in REQUIRED_TABLES:
        try:
            client.table(table).select("*").limit(1).execute()
            print(f"   ✅ {table}")
        except Exception as e:
            if "does not exist" in str(e) or "Could not find" in str(e):
                print(f"   ❌ {table} (missing)")
                missing.append(table)
            else:
                print(f"   ⚠️  {table} (error: {e})")

    return missing


def print_sql(tables):
    print("\n" + "=" * 60)
    print("📚 Run this in the Supabase SQL Editor")
    print("=" * 60)
    for table in tables:
        print(REQUIRED_TABLES[table])


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if "--sql" in argv:
        print_sql(list(REQUIRED_TABLES))
        return 0

    print("=" * 60)
    print("🚀 Studio - Supabase Setup Helper")
    print("=" * 60)

    client = check_supabase_connection()
    if client is None:
        return 1

    missing = check_tables(client)
    if missing:
        print(f"\n⚠️  Missing {len(missing)} table(s)")
        print_sql(missing)
        return 1

    print("\n✅ All job tables exist!")
    print("Set JOB_BACKEND=supabase to use them.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
