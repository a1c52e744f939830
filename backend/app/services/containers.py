"""
Case folder resolution (find-or-create).

Each case gets exactly one folder, ``{prefix}/{case_id}``, under the fixed
parent prefix. Folders are created once and never deleted.
"""

import logging
from dataclasses import dataclass

from app.errors import ContainerOpFailed, ValidationError
from app.models.transfer import is_valid_case_id
from app.services.retry import with_retries
from app.services.storage import SupabaseCaseStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Container:
    ref: str
    url: str
    created: bool = False


class ContainerResolver:
    def __init__(
        self,
        storage: SupabaseCaseStorage,
        parent_prefix: str,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
    ):
        self.storage = storage
        self.parent_prefix = parent_prefix.strip("/")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms

    def folder_path(self, case_id: str) -> str:
        return f"{self.parent_prefix}/{case_id}"

    async def _retry(self, operation, label: str):
        return await with_retries(
            operation,
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            label=label,
        )

    async def resolve_container(self, case_id: str) -> Container:
        """
        Return the folder for ``case_id``, creating it (with public read) when
        no folder with exactly that name exists under the parent prefix.

        Raises:
            ValidationError: blank case id, or one that is not a single folder
                name (path separators, whitespace, only dots).
            ContainerOpFailed: listing, creating or sharing failed after retries.
        """
        folder_name = str(case_id or "").strip()
        if not folder_name:
            raise ValidationError("caseNumber is required")
        if not is_valid_case_id(folder_name):
            raise ValidationError(f"caseNumber {folder_name!r} is not a valid folder name")
        folder_path = self.folder_path(folder_name)

        try:
            logger.info(f"Looking up folder for case {folder_name}")
            existing = await self._retry(
                lambda: self.storage.list_folders(self.parent_prefix, search=folder_name),
                label=f"List folders {folder_name}",
            )

            if folder_name in existing:
                logger.info(f"Found folder for case {folder_name}: {folder_path}")
                return Container(ref=folder_path, url=self.storage.public_url(folder_path))

            logger.info(f"No folder for case {folder_name}; creating {folder_path}")
            await self._retry(
                lambda: self.storage.create_folder(folder_path),
                label=f"Create folder {folder_name}",
            )
            await self._retry(
                self.storage.ensure_public_read,
                label=f"Grant public read {folder_name}",
            )
        except Exception as exc:
            logger.error(f"Error creating/resolving folder for case {folder_name}: {exc}")
            raise ContainerOpFailed(
                f"Could not resolve folder for case {folder_name}: {exc}"
            ) from exc

        logger.info(f"Created folder for case {folder_name}: {folder_path}")
        return Container(ref=folder_path, url=self.storage.public_url(folder_path), created=True)
