"""
Audit log persisted as a CSV object in a private bucket of its own.

Format:
    fileName,caseNumber,status,error
    report.pdf,00012345,SUCCESS,""
    scan.bin,00012345,FAIL,"Salesforce responded with 404"

The error column is always quoted with embedded quotes doubled; the name and
case columns are quoted when they hold a comma, quote or line break. Records
may span lines and prior records are carried over verbatim. Updates are
read-modify-write-replace of the whole object, serialized by an asyncio.Lock
so concurrent batches in this process cannot lose each other's rows.
"""

import asyncio
import csv
import io
import logging
from typing import Iterable, List

from app.errors import LogWriteFailed
from app.models.transfer import OutcomeStatus, TransferOutcome
from app.services.retry import with_retries
from app.services.storage import SupabaseCaseStorage

logger = logging.getLogger(__name__)

LOG_HEADER = "fileName,caseNumber,status,error"

_NEEDS_QUOTING = (",", '"', "\n", "\r")


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _field(value: str) -> str:
    if any(ch in value for ch in _NEEDS_QUOTING):
        return _quote(value)
    return value


def format_row(outcome: TransferOutcome) -> str:
    return ",".join([
        _field(outcome.file_name),
        _field(outcome.case_id),
        outcome.status.value,
        _quote(outcome.error or ""),
    ])


def split_records(content: str) -> List[str]:
    """
    Split CSV text into raw records, keeping each record's text verbatim.
    A line break inside a quoted field does not end the record.
    """
    records = []
    current: List[str] = []
    quotes = 0
    for line in content.split("\n"):
        current.append(line)
        quotes += line.count('"')
        if quotes % 2 == 0:
            records.append("\n".join(current))
            current = []
            quotes = 0
    if current:
        records.append("\n".join(current))
    return records


def strip_header(content: str) -> List[str]:
    """Body records of an existing log, without the header or blank records."""
    records = split_records(content)
    if records and records[0].strip() == LOG_HEADER:
        records = records[1:]
    return [record for record in records if record.strip()]


def merge_log(existing: str, outcomes: Iterable[TransferOutcome]) -> str:
    """Header + every prior row verbatim + one row per new outcome."""
    rows = strip_header(existing) + [format_row(o) for o in outcomes]
    return "\n".join([LOG_HEADER] + rows) + "\n"


def parse_log(content: str) -> List[TransferOutcome]:
    outcomes = []
    for record in csv.DictReader(io.StringIO(content)):
        outcomes.append(
            TransferOutcome(
                file_name=record["fileName"],
                case_id=record["caseNumber"],
                status=OutcomeStatus(record["status"]),
                error=record.get("error") or None,
            )
        )
    return outcomes


class AuditLogger:
    def __init__(
        self,
        storage: SupabaseCaseStorage,
        log_path: str,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
    ):
        self.storage = storage
        self.log_path = log_path
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._lock = asyncio.Lock()

    async def _read_existing(self) -> str:
        """
        Current log text, or "" when no log has been written yet.

        Raises:
            LogWriteFailed: the log exists (or its existence could not be
                checked) but could not be read. Writing then would erase history.
        """
        try:
            exists = await with_retries(
                lambda: self.storage.object_exists(self.log_path),
                max_attempts=self.max_attempts,
                base_delay_ms=self.base_delay_ms,
                label="Check audit log",
            )
            if not exists:
                logger.info(f"No audit log at {self.log_path}; starting a new one")
                return ""
            raw = await with_retries(
                lambda: self.storage.download_object(self.log_path),
                max_attempts=self.max_attempts,
                base_delay_ms=self.base_delay_ms,
                label="Read audit log",
            )
        except Exception as exc:
            raise LogWriteFailed(
                f"Could not read audit log {self.log_path}; not rewriting it: {exc}"
            ) from exc
        return raw.decode("utf-8", errors="replace")

    async def append_results(self, outcomes: List[TransferOutcome]) -> str:
        """
        Merge ``outcomes`` into the log and rewrite it.

        Returns:
            The log's storage path.

        Raises:
            LogWriteFailed: the existing log could not be read, or the
                rewrite failed after retries.
        """
        async with self._lock:
            existing = await self._read_existing()
            content = merge_log(existing, outcomes).encode("utf-8")
            try:
                await with_retries(
                    lambda: self.storage.upload_object(self.log_path, content, "text/csv"),
                    max_attempts=self.max_attempts,
                    base_delay_ms=self.base_delay_ms,
                    label="Write audit log",
                )
            except Exception as exc:
                raise LogWriteFailed(f"Could not write audit log {self.log_path}: {exc}") from exc

        logger.info(f"Audit log {self.log_path} updated with {len(outcomes)} row(s)")
        return self.log_path
