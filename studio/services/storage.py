"""Blob storage for product uploads and generated images."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from supabase import Client, create_client

from studio.config import config

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Abstract bucket of binary objects addressed by path."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Store ``data`` under ``path``. Raises on failure."""

    @abstractmethod
    async def get_public_url(self, path: str) -> str:
        """Return the public URL of the object at ``path``."""

    @abstractmethod
    async def remove(self, paths: List[str]) -> None:
        """Delete the objects at ``paths``. Raises on failure."""


class SupabaseBlobStore(BlobStore):
    """Supabase Storage bucket.

    The supabase client is synchronous, so calls run in a worker thread.
    """

    def __init__(self, bucket: str, client: Optional[Client] = None):
        self.bucket = bucket
        self.client = client or get_supabase_client()

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        logger.info(f"Uploading {len(data)} bytes to {self.bucket}/{path}")
        await asyncio.to_thread(
            self.client.storage.from_(self.bucket).upload,
            path,
            data,
            {"content-type": content_type},
        )

    async def get_public_url(self, path: str) -> str:
        return await asyncio.to_thread(
            self.client.storage.from_(self.bucket).get_public_url,
            path,
        )

    async def remove(self, paths: List[str]) -> None:
        if not paths:
            return
        logger.info(f"Removing {len(paths)} object(s) from {self.bucket}")
        await asyncio.to_thread(
            self.client.storage.from_(self.bucket).remove,
            paths,
        )


_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create the shared Supabase client."""
    global _client
    if _client is None:
        if not config.supabase_url or not config.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be configured")
        _client = create_client(config.supabase_url, config.supabase_key)
        logger.info("Supabase client created")
    return _client
