"""
Runtime configuration.
Reads environment variables (optionally from a .env file) once per process.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

# 512 MiB
DEFAULT_MAX_DOWNLOAD_BYTES = 512 * 1024 * 1024


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Process-wide settings; read-only after startup."""

    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    storage_bucket: str = "case-files"
    storage_prefix: str = "cases"
    audit_log_bucket: str = "case-files-audit"
    audit_log_name: str = "transfer_log.csv"

    sf_instance_url: str = ""
    sf_api_version: str = "v64.0"
    sf_token_url: str = "https://login.salesforce.com/services/oauth2/token"
    sf_client_id: Optional[str] = None
    sf_client_secret: Optional[str] = None
    sf_refresh_token: Optional[str] = None
    sf_mark_case_received: bool = False
    sf_case_received_field: str = "Files_Received__c"

    upload_concurrency: int = 10
    retry_attempts: int = 3
    retry_base_delay_ms: int = 1000
    max_download_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES
    http_timeout_seconds: float = 60.0

    cors_origins: List[str] = field(default_factory=list)

    @property
    def audit_log_path(self) -> str:
        """Path of the shared audit log inside ``audit_log_bucket``."""
        return f"{self.storage_prefix}/{self.audit_log_name}"

    @property
    def crm_credentials_configured(self) -> bool:
        return bool(self.sf_client_id and self.sf_client_secret and self.sf_refresh_token)


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    cors_origins = [o.strip() for o in cors_env.split(",") if o.strip()] if cors_env else []

    concurrency = _env_int("UPLOAD_CONCURRENCY", 10)
    if concurrency < 1:
        raise ValueError("UPLOAD_CONCURRENCY must be at least 1")

    storage_bucket = os.getenv("STORAGE_BUCKET", "case-files")
    audit_log_bucket = os.getenv("AUDIT_LOG_BUCKET", "case-files-audit")
    # The case bucket is made public; the log must never share it
    if audit_log_bucket == storage_bucket:
        raise ValueError("AUDIT_LOG_BUCKET must differ from STORAGE_BUCKET")

    return Settings(
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
        storage_bucket=storage_bucket,
        storage_prefix=os.getenv("STORAGE_PREFIX", "cases").strip("/"),
        audit_log_bucket=audit_log_bucket,
        audit_log_name=os.getenv("AUDIT_LOG_NAME", "transfer_log.csv"),
        sf_instance_url=os.getenv("SF_INSTANCE_URL", "").rstrip("/"),
        sf_api_version=os.getenv("SF_API_VERSION", "v64.0"),
        sf_token_url=os.getenv(
            "SF_TOKEN_URL", "https://login.salesforce.com/services/oauth2/token"
        ),
        sf_client_id=os.getenv("SF_CLIENT_ID"),
        sf_client_secret=os.getenv("SF_CLIENT_SECRET"),
        sf_refresh_token=os.getenv("SF_REFRESH_TOKEN"),
        sf_mark_case_received=_env_bool("SF_MARK_CASE_RECEIVED"),
        sf_case_received_field=os.getenv("SF_CASE_RECEIVED_FIELD", "Files_Received__c"),
        upload_concurrency=concurrency,
        retry_attempts=_env_int("RETRY_ATTEMPTS", 3),
        retry_base_delay_ms=_env_int("RETRY_BASE_DELAY_MS", 1000),
        max_download_bytes=_env_int("MAX_DOWNLOAD_BYTES", DEFAULT_MAX_DOWNLOAD_BYTES),
        http_timeout_seconds=float(_env_int("HTTP_TIMEOUT_SECONDS", 60)),
        cors_origins=cors_origins,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
