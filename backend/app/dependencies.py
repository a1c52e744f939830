"""
Service wiring.

Builds the storage, CRM and transfer services once per process from Settings.
Routers receive them through FastAPI's Depends, so tests can swap in doubles
with ``app.dependency_overrides``.
"""

from functools import lru_cache

import httpx

from app.config import Settings, get_settings
from app.services.audit_log import AuditLogger
from app.services.containers import ContainerResolver
from app.services.crm import SalesforceClient
from app.services.fetcher import SalesforceFetcher
from app.services.storage import SupabaseCaseStorage
from app.services.transfer import TransferService


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True)


@lru_cache(maxsize=1)
def get_storage() -> SupabaseCaseStorage:
    settings = get_settings()
    return SupabaseCaseStorage.from_credentials(
        settings.supabase_url, settings.supabase_service_key, settings.storage_bucket
    )


def build_transfer_service(
    settings: Settings,
    storage: SupabaseCaseStorage,
    http_client: httpx.AsyncClient,
) -> TransferService:
    retry = {
        "max_attempts": settings.retry_attempts,
        "base_delay_ms": settings.retry_base_delay_ms,
    }

    fetcher = SalesforceFetcher(
        http_client,
        instance_url=settings.sf_instance_url,
        api_version=settings.sf_api_version,
        max_bytes=settings.max_download_bytes,
        **retry,
    )
    resolver = ContainerResolver(storage, settings.storage_prefix, **retry)
    audit_logger = AuditLogger(
        storage.for_bucket(settings.audit_log_bucket), settings.audit_log_path, **retry
    )

    crm = None
    if settings.sf_mark_case_received and settings.crm_credentials_configured:
        crm = SalesforceClient(
            http_client,
            instance_url=settings.sf_instance_url,
            token_url=settings.sf_token_url,
            client_id=settings.sf_client_id,
            client_secret=settings.sf_client_secret,
            refresh_token=settings.sf_refresh_token,
            api_version=settings.sf_api_version,
            **retry,
        )

    return TransferService(
        storage=storage,
        fetcher=fetcher,
        resolver=resolver,
        audit_logger=audit_logger,
        crm=crm,
        upload_concurrency=settings.upload_concurrency,
        case_received_field=settings.sf_case_received_field if crm else None,
        **retry,
    )


@lru_cache(maxsize=1)
def get_transfer_service() -> TransferService:
    return build_transfer_service(get_settings(), get_storage(), get_http_client())
