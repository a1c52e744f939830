"""
Case File Relay API
FastAPI application that relays case files from uploads and Salesforce into storage.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import get_settings
from app.dependencies import get_http_client, get_storage
from app.routers import transfers

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Case File Relay API",
    description="Relays case files from uploads and Salesforce into object storage",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins from the CORS_ORIGINS environment
    variable (comma-separated), e.g.:
        CORS_ORIGINS=https://acme.my.salesforce.com,https://acme.lightning.force.com

    Duplicates are removed while preserving order.
    """
    seen: set = set()
    origins: List[str] = []
    for origin in get_settings().cors_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(transfers.router, tags=["transfers"])


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 {"error": ...}."""
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", []) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    message = "; ".join(problems) or "Invalid request"
    logger.warning(f"Rejected {request.method} {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message})


@app.on_event("startup")
async def log_startup_config() -> None:
    settings = get_settings()
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info(
        "Case File Relay listening on port %s (bucket=%s, audit_bucket=%s, prefix=%s, upload_concurrency=%d)",
        host_port,
        settings.storage_bucket,
        settings.audit_log_bucket,
        settings.storage_prefix,
        settings.upload_concurrency,
    )


@app.on_event("shutdown")
async def close_http_client() -> None:
    if get_http_client.cache_info().currsize:
        await get_http_client().aclose()


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Case File Relay is running"


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/storage")
async def health_storage():
    """
    Test storage access.

    Lists buckets and verifies the case bucket and the audit log bucket exist.
    Returns 503 if storage is unreachable or a bucket is missing.
    """
    settings = get_settings()
    buckets = [settings.storage_bucket, settings.audit_log_bucket]
    try:
        storage = get_storage()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=f"Storage client unavailable: {exc}")

    for bucket in buckets:
        try:
            exists = await storage.for_bucket(bucket).bucket_exists()
        except Exception as exc:
            logger.error(f"Storage health check failed: {exc}")
            raise HTTPException(
                status_code=503,
                detail=f"Storage check failed: {str(exc)}",
            )

        if not exists:
            raise HTTPException(status_code=503, detail=f"Storage bucket '{bucket}' not found")

    return {
        "status": "ok",
        "storage": "reachable",
        "bucket": settings.storage_bucket,
        "audit_bucket": settings.audit_log_bucket,
    }
