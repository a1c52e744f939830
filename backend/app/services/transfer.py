"""
Transfer orchestration.

Batch pipeline (POST /uploadBatch):

    Downloading → Gating → (Uploading | Skipped) → Logging → Responding

- Downloads run one item at a time so every failure is attributed to its
  item before anything is written to storage.
- The gate is all-or-nothing: a single failed download means no uploads.
- Stored names are sanitized and made unique within the batch; the outcome and
  the audit log record the name the object was actually stored under.
- Uploads run in chunks of ``upload_concurrency``; each chunk settles before
  the next starts. An upload failure turns that item (and the batch) into a
  failure in the returned outcomes and in the audit log.
- Audit log failures are warnings; they never fail a transfer.

Single-file paths (POST /upload, POST /uploadFromSalesforce) skip the gate.
"""

import asyncio
import logging
import os
from typing import List, Optional

from app.errors import LogWriteFailed, UploadFailed
from app.models.transfer import (
    BatchResult,
    BatchStatus,
    FileRef,
    ItemResult,
    ItemStatus,
    OutcomeStatus,
    SingleUploadResult,
    TransferOutcome,
    TransferRequest,
)
from app.services.audit_log import AuditLogger
from app.services.classifier import classify, normalize_mime_type
from app.services.containers import Container, ContainerResolver
from app.services.crm import SalesforceClient
from app.services.fetcher import SalesforceFetcher
from app.services.retry import with_retries
from app.services.storage import SupabaseCaseStorage, sanitize_object_name

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_CONCURRENCY = 10


def _chunks(items: List, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def assign_stored_names(items: List[ItemResult]) -> None:
    """
    Give every downloaded item the object name it will be stored under.

    Names are sanitized, then made unique within the batch: a later item whose
    name is already taken becomes ``stem_2.ext``, ``stem_3.ext`` and so on.
    Uploads are upserts, so two items sharing a name would overwrite each other.
    """
    taken = set()
    for item in items:
        if item.status != ItemStatus.SUCCESS:
            continue
        name = sanitize_object_name(item.file_name)
        if name in taken:
            stem, ext = os.path.splitext(name)
            counter = 2
            while f"{stem}_{counter}{ext}" in taken:
                counter += 1
            name = f"{stem}_{counter}{ext}"
        taken.add(name)
        item.file_name = name


class TransferService:
    def __init__(
        self,
        storage: SupabaseCaseStorage,
        fetcher: SalesforceFetcher,
        resolver: ContainerResolver,
        audit_logger: AuditLogger,
        crm: Optional[SalesforceClient] = None,
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        case_received_field: Optional[str] = None,
    ):
        if upload_concurrency < 1:
            raise ValueError("upload_concurrency must be at least 1")
        self.storage = storage
        self.fetcher = fetcher
        self.resolver = resolver
        self.audit_logger = audit_logger
        self.crm = crm
        self.upload_concurrency = upload_concurrency
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.case_received_field = case_received_field

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def object_path(self, container: Container, file_name: str) -> str:
        return f"{container.ref}/{sanitize_object_name(file_name)}"

    async def _upload(self, path: str, content: bytes, mime_type: str) -> str:
        try:
            return await with_retries(
                lambda: self.storage.upload_object(path, content, mime_type),
                max_attempts=self.max_attempts,
                base_delay_ms=self.base_delay_ms,
                label=f"Upload {path}",
            )
        except Exception as exc:
            raise UploadFailed(f"Upload of {path} failed: {exc}") from exc

    async def _download_item(self, file_ref: FileRef, access_token: str) -> ItemResult:
        """Fetch and classify one item. Never raises; failures land in the result."""
        item = ItemResult(
            file_ref=file_ref,
            file_name=file_ref.suggested_name or file_ref.remote_id,
        )
        try:
            fetched = await self.fetcher.fetch_remote_file(file_ref, access_token)
        except Exception as exc:
            logger.warning(f"Download of {file_ref.remote_id} failed: {exc}")
            item.fail(str(exc))
            return item

        classification = classify(
            fetched.buffer, fetched.mime_type, file_ref.suggested_name, file_ref.remote_id
        )
        item.payload = fetched.buffer
        item.mime_type = classification.final_mime_type
        item.file_name = classification.final_file_name
        item.status = ItemStatus.SUCCESS
        return item

    async def _append_log(self, outcomes: List[TransferOutcome]) -> Optional[str]:
        try:
            return await self.audit_logger.append_results(outcomes)
        except LogWriteFailed as exc:
            logger.warning(f"Audit log not updated: {exc}")
            return None

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def _upload_item(self, container: Container, item: ItemResult) -> None:
        path = self.object_path(container, item.file_name)
        try:
            await self._upload(path, item.payload, item.mime_type)
        except UploadFailed as exc:
            logger.error(f"Upload of {item.file_name} failed after gate: {exc}")
            item.fail(str(exc))
            return
        item.payload = None
        logger.info(f"Uploaded {item.file_name} to {path}")

    async def _upload_all(self, container: Container, items: List[ItemResult]) -> None:
        for chunk in _chunks(items, self.upload_concurrency):
            await asyncio.gather(*(self._upload_item(container, item) for item in chunk))

    async def run_batch(self, request: TransferRequest) -> BatchResult:
        """
        Relay every file of ``request`` into the case folder, or none of them.

        Raises:
            ContainerOpFailed: the case folder could not be resolved.
        """
        case_id = request.case_id
        logger.info(f"Batch for case {case_id}: {len(request.items)} file(s)")

        items = []
        for file_ref in request.items:
            items.append(await self._download_item(file_ref, request.access_token))
        assign_stored_names(items)

        failed = [i for i in items if i.status != ItemStatus.SUCCESS]
        container: Optional[Container] = None

        if failed:
            logger.warning(
                f"Batch for case {case_id} gated: {len(failed)}/{len(items)} download(s) failed; "
                "nothing uploaded"
            )
        else:
            container = await self.resolver.resolve_container(case_id)
            await self._upload_all(container, items)

        outcomes = [TransferOutcome.from_item(item, case_id) for item in items]
        all_ok = all(o.status == OutcomeStatus.SUCCESS for o in outcomes)
        log_ref = await self._append_log(outcomes)

        if all_ok:
            await self._mark_case_received(case_id)

        result = BatchResult(
            overall_status=BatchStatus.OK if all_ok else BatchStatus.INCOMPLETE,
            success=all_ok,
            container_ref=container.ref if container else None,
            container_url=container.url if container else None,
            log_ref=log_ref,
            outcomes=outcomes,
        )
        logger.info(f"Batch for case {case_id} finished: {result.overall_status.value}")
        return result

    async def _mark_case_received(self, case_id: str) -> None:
        if not (self.crm and self.case_received_field):
            return
        try:
            await self.crm.mark_files_received(case_id, self.case_received_field)
        except Exception as exc:
            logger.warning(f"Could not mark case {case_id} as files received: {exc}")

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    async def upload_local_file(
        self,
        case_id: str,
        temp_path: str,
        file_name: str,
        mime_type: Optional[str],
    ) -> SingleUploadResult:
        """
        Upload a file saved to a temporary path. The temporary file is removed
        whether the upload succeeds or not.
        """
        stored_name = sanitize_object_name(file_name)
        try:
            container = await self.resolver.resolve_container(case_id)
            path = self.object_path(container, stored_name)
            try:
                await with_retries(
                    lambda: self.storage.upload_file(path, temp_path, normalize_mime_type(mime_type)),
                    max_attempts=self.max_attempts,
                    base_delay_ms=self.base_delay_ms,
                    label=f"Upload {path}",
                )
            except Exception as exc:
                raise UploadFailed(f"Upload of {path} failed: {exc}") from exc
        finally:
            try:
                os.unlink(temp_path)
                logger.info(f"Temporary file removed: {temp_path}")
            except OSError as exc:
                logger.error(f"Could not remove temporary file {temp_path}: {exc}")

        logger.info(f"File {file_name} uploaded for case {container.ref}: {container.url}")
        return SingleUploadResult(
            url=container.url,
            container_ref=container.ref,
            file_name=stored_name,
            case_id=case_id,
        )

    async def relay_single(
        self, case_id: str, file_ref: FileRef, access_token: str
    ) -> SingleUploadResult:
        """
        Fetch one CRM file and store it in the case folder. Failures propagate
        to the caller; the outcome is logged either way.
        """
        item = ItemResult(file_ref=file_ref, file_name=file_ref.suggested_name or file_ref.remote_id)
        try:
            fetched = await self.fetcher.fetch_remote_file(file_ref, access_token)
            classification = classify(
                fetched.buffer, fetched.mime_type, file_ref.suggested_name, file_ref.remote_id
            )
            item.file_name = sanitize_object_name(classification.final_file_name)
            container = await self.resolver.resolve_container(case_id)
            path = self.object_path(container, item.file_name)
            await self._upload(path, fetched.buffer, classification.final_mime_type)
        except Exception as exc:
            item.fail(str(exc))
            await self._append_log([TransferOutcome.from_item(item, case_id)])
            raise

        item.status = ItemStatus.SUCCESS
        await self._append_log([TransferOutcome.from_item(item, case_id)])
        logger.info(f"File {item.file_name} of case {case_id} relayed to {path}")
        return SingleUploadResult(
            url=self.storage.public_url(path),
            container_ref=container.ref,
            file_name=item.file_name,
            case_id=case_id,
            remote_id=file_ref.remote_id,
        )
