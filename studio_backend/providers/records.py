"""
Dashboard domain tables (competitors, personas, generated_ads...) on Supabase.

The admin client bypasses row level security, so every call here
filters on the owner scope column itself.
"""

from typing import Any, Dict, List, Optional

from supabase import Client

from studio_backend.database.client import execute, get_supabase_admin_client
from studio_backend.providers.base import ProviderError


class SupabaseRecordStore:

    def __init__(self, client: Optional[Client] = None, scope_column: str = "project_id"):
        self._client = client
        self.scope_column = scope_column

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_admin_client()
        return self._client

    async def insert(self, table: str, owner_scope: str, row: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await execute(
                self.client.table(table)
                .insert({**row, self.scope_column: owner_scope})
            )
        except Exception as e:
            raise ProviderError("records", f"insert into {table} failed: {e}")
        if not result.data:
            raise ProviderError("records", f"insert into {table} returned no row")
        return result.data[0]

    async def update(
        self,
        table: str,
        owner_scope: str,
        record_id: str,
        values: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        try:
            result = await execute(
                self.client.table(table)
                .update(values)
                .eq("id", record_id)
                .eq(self.scope_column, owner_scope)
            )
        except Exception as e:
            raise ProviderError("records", f"update of {table}/{record_id} failed: {e}")
        return result.data[0] if result.data else None

    async def select(
        self,
        table: str,
        owner_scope: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = (
            self.client.table(table)
            .select("*")
            .eq(self.scope_column, owner_scope)
        )
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple)):
                query = query.in_(column, list(value))
            else:
                query = query.eq(column, value)
        if limit:
            query = query.limit(limit)

        try:
            result = await execute(query)
        except Exception as e:
            raise ProviderError("records", f"select from {table} failed: {e}")
        return result.data
