"""
Pydantic models for file transfers.

Request bodies use the camelCase field names the CRM integration sends
(fileId, caseNumber, accessToken, ...); Python code uses snake_case via
aliases.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceType(str, Enum):
    """Which Salesforce object holds the file body."""
    ATTACHMENT = "attachment"
    CONTENT_VERSION = "contentVersion"


class OutcomeStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"


class BatchStatus(str, Enum):
    OK = "OK"
    INCOMPLETE = "INCOMPLETE"


class ItemStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


def _require_text(value: str, field_name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    return value


# A case id becomes one folder name, so no separators or whitespace
_CASE_ID_PATTERN = re.compile(r"^[\w\-.]+$")


def is_valid_case_id(value: str) -> bool:
    return bool(_CASE_ID_PATTERN.match(value)) and value.strip(".") != ""


def _require_case_id(value: str) -> str:
    value = _require_text(value, "caseNumber")
    if not is_valid_case_id(value):
        raise ValueError(
            "caseNumber may only contain letters, digits, underscores, hyphens and dots"
        )
    return value


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class FileRef(BaseModel):
    """One remote file to relay. Never mutated once parsed."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    remote_id: str = Field(alias="fileId")
    source_type: SourceType = Field(alias="type")
    suggested_name: Optional[str] = Field(default=None, alias="name")

    @field_validator("remote_id")
    @classmethod
    def _remote_id_not_empty(cls, v: str) -> str:
        return _require_text(v, "fileId")

    @field_validator("suggested_name")
    @classmethod
    def _blank_name_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class TransferRequest(BaseModel):
    """Body of POST /uploadBatch."""
    model_config = ConfigDict(populate_by_name=True)

    case_id: str = Field(alias="caseNumber")
    access_token: str = Field(alias="accessToken")
    items: List[FileRef] = Field(alias="files", min_length=1)

    @field_validator("case_id")
    @classmethod
    def _case_id_is_folder_name(cls, v: str) -> str:
        return _require_case_id(v)

    @field_validator("access_token")
    @classmethod
    def _token_not_empty(cls, v: str) -> str:
        return _require_text(v, "accessToken")


class SingleFetchRequest(FileRef):
    """Body of POST /uploadFromSalesforce: one FileRef plus case and token."""

    case_id: str = Field(alias="caseNumber")
    access_token: str = Field(alias="accessToken")

    @field_validator("case_id")
    @classmethod
    def _case_id_is_folder_name(cls, v: str) -> str:
        return _require_case_id(v)

    @field_validator("access_token")
    @classmethod
    def _token_not_empty(cls, v: str) -> str:
        return _require_text(v, "accessToken")

    def file_ref(self) -> FileRef:
        return FileRef(
            remote_id=self.remote_id,
            source_type=self.source_type,
            suggested_name=self.suggested_name,
        )


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------

@dataclass
class FetchedFile:
    """Raw bytes and the content type reported by the CRM."""
    buffer: bytes
    mime_type: str


@dataclass
class ItemResult:
    """Processing state of one FileRef inside a batch."""
    file_ref: FileRef
    file_name: str
    status: ItemStatus = ItemStatus.PENDING
    payload: Optional[bytes] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None

    def fail(self, error: str) -> None:
        self.status = ItemStatus.FAILED
        self.error = error
        self.payload = None


class TransferOutcome(BaseModel):
    """One audit log row. Immutable once produced."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_name: str = Field(alias="fileName")
    case_id: str = Field(alias="caseNumber")
    status: OutcomeStatus
    error: Optional[str] = None

    @classmethod
    def from_item(cls, item: ItemResult, case_id: str) -> "TransferOutcome":
        if item.status == ItemStatus.SUCCESS:
            return cls(file_name=item.file_name, case_id=case_id, status=OutcomeStatus.SUCCESS)
        return cls(
            file_name=item.file_name,
            case_id=case_id,
            status=OutcomeStatus.FAIL,
            error=item.error or "unknown error",
        )


class BatchResult(BaseModel):
    """Aggregate result of POST /uploadBatch."""
    model_config = ConfigDict(populate_by_name=True)

    overall_status: BatchStatus = Field(alias="status")
    success: bool
    container_ref: Optional[str] = Field(default=None, alias="folderId")
    container_url: Optional[str] = Field(default=None, alias="folderUrl")
    log_ref: Optional[str] = Field(default=None, alias="logFile")
    outcomes: List[TransferOutcome] = Field(default_factory=list, alias="resultados")

    @property
    def http_status(self) -> int:
        return 200 if self.overall_status == BatchStatus.OK else 207


class SingleUploadResult(BaseModel):
    """Result of the single-file endpoints."""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    container_ref: str = Field(alias="folderId")
    file_name: str = Field(alias="fileName")
    case_id: str = Field(alias="caseNumber")
    remote_id: Optional[str] = Field(default=None, alias="fileId")
