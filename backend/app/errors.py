"""
Error taxonomy for the transfer pipeline.

Every error carries:
  retryable    — whether the Retry Executor may attempt the operation again
  status_code  — HTTP status the routers use when the error escapes a request
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""

    retryable: bool = True
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RelayError):
    """A required request field is missing or malformed."""

    retryable = False
    status_code = 400


class RemoteUnavailable(RelayError):
    """The CRM answered with a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PayloadTooLarge(RelayError):
    """A downloaded file exceeded the size ceiling."""

    retryable = False

    def __init__(self, size: int, limit: int):
        super().__init__(f"Payload exceeds {limit} bytes (read {size})")
        self.size = size
        self.limit = limit


class ContainerOpFailed(RelayError):
    """Listing, creating or sharing a case folder failed."""


class UploadFailed(RelayError):
    """Writing one file to storage failed."""


class LogWriteFailed(RelayError):
    """Persisting the audit log failed. Reported as a warning only."""


class RetryExhausted(RelayError):
    """Terminal wrapper raised once every attempt of an operation has failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException):
        super().__init__(f"[{label}] failed after {attempts} attempts: {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
