"""
File relay endpoints.

Endpoints:
  POST /upload                — multipart upload of one file into a case folder
  POST /uploadFromSalesforce  — fetch one Salesforce file into a case folder
  POST /uploadBatch           — all-or-nothing relay of several Salesforce files

Errors:
  400 {"error": ...}                — missing or malformed request fields
  500 {"error": ..., "detalle": ...} — storage or CRM failure
"""

import logging
import os
import tempfile
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse

from app.dependencies import get_transfer_service
from app.errors import RelayError
from app.models.transfer import SingleFetchRequest, TransferRequest
from app.services.transfer import TransferService

router = APIRouter()

logger = logging.getLogger(__name__)


def error_response(status_code: int, error: str, detail: Optional[str] = None, **extra) -> JSONResponse:
    body = {"error": error}
    if detail is not None:
        body["detalle"] = detail
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body)


def _relay_error_response(exc: Exception, error: str, **extra) -> JSONResponse:
    if isinstance(exc, RelayError) and exc.status_code == 400:
        return error_response(400, exc.message)
    return error_response(500, error, str(exc), **extra)


@router.post("/upload")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    parentId: Optional[str] = Form(None),
    caseNumber: Optional[str] = Form(None),
    service: TransferService = Depends(get_transfer_service),
):
    """
    Store one uploaded file in the folder of case ``parentId``.

    The upload is spooled to a temporary file which is always removed
    afterwards. Returns the case folder URL.
    """
    logger.info("POST /upload received")
    case_id = (parentId or caseNumber or "").strip()
    if not case_id:
        logger.warning("parentId missing from request body")
        return error_response(400, "parentId is required")
    if file is None or not file.filename:
        return error_response(400, "file is required")

    suffix = os.path.splitext(file.filename)[1]
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp_file:
        tmp_file.write(await file.read())
        tmp_path = tmp_file.name

    try:
        result = await service.upload_local_file(
            case_id, tmp_path, file.filename, file.content_type
        )
    except Exception as exc:
        logger.exception(f"POST /upload failed for case {case_id}")
        return _relay_error_response(exc, "File upload failed", caseNumber=case_id)

    return {"url": result.url}


@router.post("/uploadFromSalesforce")
async def upload_from_salesforce(
    body: SingleFetchRequest,
    service: TransferService = Depends(get_transfer_service),
):
    """Fetch one Salesforce file and store it in the case folder."""
    logger.info(
        f"POST /uploadFromSalesforce received: fileId={body.remote_id} "
        f"type={body.source_type.value} case={body.case_id}"
    )
    try:
        result = await service.relay_single(body.case_id, body.file_ref(), body.access_token)
    except Exception as exc:
        logger.exception(f"POST /uploadFromSalesforce failed for file {body.remote_id}")
        return _relay_error_response(
            exc,
            "Upload from Salesforce failed",
            fileId=body.remote_id,
            caseNumber=body.case_id,
        )

    return result.model_dump(by_alias=True, exclude_none=True)


@router.post("/uploadBatch")
async def upload_batch(
    body: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
):
    """
    Relay every listed Salesforce file into the case folder, or none of them.

    200 when every file was stored, 207 when any file failed. The body lists
    one result per file either way.
    """
    logger.info(f"POST /uploadBatch received: case={body.case_id} files={len(body.items)}")
    try:
        result = await service.run_batch(body)
    except Exception as exc:
        logger.exception(f"POST /uploadBatch failed for case {body.case_id}")
        return _relay_error_response(exc, "Batch upload failed", caseNumber=body.case_id)

    return JSONResponse(
        status_code=result.http_status,
        content=result.model_dump(mode="json", by_alias=True),
    )
