"""
Object storage on Supabase Storage buckets.
"""

import asyncio
from typing import Optional

from supabase import Client

from studio_backend.database.client import get_supabase_admin_client
from studio_backend.providers.base import ProviderError


class SupabaseObjectStorage:

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_admin_client()
        return self._client

    def _upload(self, data: bytes, bucket: str, path: str, content_type: str) -> str:
        store = self.client.storage.from_(bucket)
        store.upload(path, data, {"content-type": content_type, "upsert": "true"})
        return store.get_public_url(path)

    async def upload(
        self,
        data: bytes,
        bucket: str,
        path: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        # The storage client is blocking; run it off the event loop
        try:
            return await asyncio.to_thread(self._upload, data, bucket, path, content_type)
        except Exception as e:
            raise ProviderError("supabase_storage", f"upload to {bucket}/{path} failed: {e}")
