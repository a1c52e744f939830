"""
Supabase Storage adapter for case folders.
Handles folder listing/creation, object upload/download/deletion and public URLs.

The supabase-py client is synchronous; every call is pushed to a worker
thread with asyncio.to_thread so uploads can overlap on the event loop.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse, urlunparse

from supabase import Client, create_client

logger = logging.getLogger(__name__)

# Supabase has no real directories; a folder exists once an object lives under it.
FOLDER_PLACEHOLDER = ".emptyFolderPlaceholder"

_LIST_LIMIT = 1000


def sanitize_object_name(filename: str) -> str:
    """Replace spaces and special characters with underscores for storage paths."""
    return re.sub(r'[^\w\-.]', '_', filename)


def _rewrite_public_url_host(public_url: str) -> str:
    """
    Replace the host in a storage URL with the browser-accessible Supabase URL.

    When the service runs inside Docker it talks to Supabase through an
    internal URL like ``http://host.docker.internal:54321``, and Supabase
    embeds that host in every URL it builds. If ``SUPABASE_PUBLIC_URL`` is set
    its scheme and host replace the internal ones; otherwise the URL is
    returned unchanged.
    """
    public_origin = os.getenv("SUPABASE_PUBLIC_URL", "").strip()
    if not public_origin:
        return public_url

    parsed_url = urlparse(public_url)
    parsed_origin = urlparse(public_origin)

    return urlunparse((
        parsed_origin.scheme,
        parsed_origin.netloc,
        parsed_url.path,
        parsed_url.params,
        parsed_url.query,
        parsed_url.fragment,
    ))


class SupabaseCaseStorage:
    """Object storage operations scoped to one bucket."""

    def __init__(self, client: Client, bucket: str):
        self._client = client
        self.bucket = bucket

    @classmethod
    def from_credentials(cls, url: Optional[str], service_key: Optional[str], bucket: str):
        if not url or not service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for storage operations")
        return cls(create_client(url, service_key), bucket)

    def for_bucket(self, bucket: str) -> "SupabaseCaseStorage":
        """Same client, scoped to another bucket."""
        return SupabaseCaseStorage(self._client, bucket)

    def _bucket(self):
        return self._client.storage.from_(self.bucket)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def list_folders(self, parent: str, search: str = "") -> List[str]:
        """Names of the folders directly under ``parent`` (optionally prefix-filtered)."""
        def _list():
            options = {"limit": _LIST_LIMIT}
            if search:
                options["search"] = search
            return self._bucket().list(parent, options)

        entries = await asyncio.to_thread(_list)
        # Folders come back without an object id
        return [e["name"] for e in entries or [] if e.get("id") is None]

    async def create_folder(self, folder_path: str) -> str:
        """Materialize ``folder_path`` by writing an empty placeholder object."""
        await self.upload_object(f"{folder_path}/{FOLDER_PLACEHOLDER}", b"", "text/plain")
        return folder_path

    async def ensure_public_read(self) -> None:
        """
        Grant anonymous read access.

        Supabase controls public access per bucket, so this flips the bucket
        to public when it is not already.
        """
        def _grant():
            bucket = self._client.storage.get_bucket(self.bucket)
            if getattr(bucket, "public", False):
                return False
            self._client.storage.update_bucket(self.bucket, {"public": True})
            return True

        changed = await asyncio.to_thread(_grant)
        if changed:
            logger.info(f"Bucket {self.bucket!r} switched to public read")

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def upload_object(self, path: str, content: bytes, content_type: str) -> str:
        """Upload bytes to ``path`` (upsert, so re-attempts overwrite). Returns the path."""
        await asyncio.to_thread(
            self._bucket().upload,
            path,
            content,
            {
                "content-type": content_type,
                "upsert": "true",
            },
        )
        return path

    async def upload_file(self, path: str, local_path: str, content_type: str) -> str:
        """Upload a local file to ``path``."""
        content = await asyncio.to_thread(Path(local_path).read_bytes)
        return await self.upload_object(path, content, content_type)

    async def download_object(self, path: str) -> bytes:
        return await asyncio.to_thread(self._bucket().download, path)

    async def object_exists(self, path: str) -> bool:
        """True when an object is stored at exactly ``path``."""
        parent, _, name = path.rpartition("/")

        def _list():
            return self._bucket().list(parent, {"limit": _LIST_LIMIT, "search": name})

        entries = await asyncio.to_thread(_list)
        return any(e.get("name") == name and e.get("id") is not None for e in entries or [])

    async def delete_object(self, path: str) -> bool:
        """Delete ``path``. Returns False when nothing was removed."""
        result = await asyncio.to_thread(self._bucket().remove, [path])
        return bool(result)

    def public_url(self, path: str) -> str:
        return _rewrite_public_url_host(self._bucket().get_public_url(path))

    async def bucket_exists(self) -> bool:
        buckets = await asyncio.to_thread(self._client.storage.list_buckets)
        return self.bucket in [b.name for b in buckets]
