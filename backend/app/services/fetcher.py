"""
Remote fetcher for Salesforce file bodies.

Two REST resources hold file content:
  attachment      → /sobjects/Attachment/{id}/Body
  contentVersion  → /sobjects/ContentVersion/{id}/VersionData

Downloads are streamed so the size ceiling trips as soon as it is crossed.
"""

import logging
from typing import Optional

import httpx

from app.config import DEFAULT_MAX_DOWNLOAD_BYTES
from app.errors import PayloadTooLarge, RemoteUnavailable
from app.models.transfer import FetchedFile, FileRef, SourceType
from app.services.classifier import DEFAULT_MIME_TYPE
from app.services.retry import with_retries

logger = logging.getLogger(__name__)

_SOURCE_PATHS = {
    SourceType.ATTACHMENT: "sobjects/Attachment/{id}/Body",
    SourceType.CONTENT_VERSION: "sobjects/ContentVersion/{id}/VersionData",
}


def build_source_url(
    instance_url: str, api_version: str, source_type: SourceType, remote_id: str
) -> str:
    """Return the REST URL holding the body of ``remote_id``."""
    path = _SOURCE_PATHS[source_type].format(id=remote_id)
    return f"{instance_url.rstrip('/')}/services/data/{api_version}/{path}"


class SalesforceFetcher:
    """Downloads file bodies from Salesforce on behalf of the caller's token."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        instance_url: str,
        api_version: str = "v64.0",
        max_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
    ):
        self._client = client
        self.instance_url = instance_url
        self.api_version = api_version
        self.max_bytes = max_bytes
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms

    async def _download_once(self, url: str, access_token: str) -> FetchedFile:
        headers = {"Authorization": f"Bearer {access_token}"}
        async with self._client.stream("GET", url, headers=headers) as response:
            if not response.is_success:
                raise RemoteUnavailable(
                    f"Salesforce responded with {response.status_code}",
                    status=response.status_code,
                )

            chunks = []
            total = 0
            async for chunk in response.aiter_bytes():
                total += len(chunk)
                if total > self.max_bytes:
                    raise PayloadTooLarge(total, self.max_bytes)
                chunks.append(chunk)

            mime_type: Optional[str] = response.headers.get("content-type")
            return FetchedFile(buffer=b"".join(chunks), mime_type=mime_type or DEFAULT_MIME_TYPE)

    async def fetch_remote_file(self, file_ref: FileRef, access_token: str) -> FetchedFile:
        """
        Download one file body.

        Raises:
            RetryExhausted: every attempt failed (e.g. repeated RemoteUnavailable
                or transport errors).
            PayloadTooLarge: the body is larger than ``max_bytes``; not retried.
        """
        url = build_source_url(
            self.instance_url, self.api_version, file_ref.source_type, file_ref.remote_id
        )
        logger.info(f"Downloading {file_ref.source_type.value} {file_ref.remote_id} from {url}")

        fetched = await with_retries(
            lambda: self._download_once(url, access_token),
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            label=f"Salesforce download {file_ref.remote_id}",
        )
        logger.info(
            f"Downloaded {file_ref.remote_id}: {len(fetched.buffer)} bytes, "
            f"content_type={fetched.mime_type!r}"
        )
        return fetched
