"""
Scan API router: offline receipt extraction from uploaded photos.
"""

import asyncio
import logging
from functools import lru_cache
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from offline_receipt.config import settings
from offline_receipt.errors import EngineError, PipelineBusyError, ProcessingError, ReceiptOCRError
from offline_receipt.models.receipt import (
    PreferencesUpdate,
    PreloadRequest,
    PreloadResponse,
    ScanResponse,
    StatusResponse,
)
from offline_receipt.services.offline import get_estimated_model_size
from offline_receipt.services.worker import ReceiptWorker

router = APIRouter(prefix="/scan", tags=["scan"])
logger = logging.getLogger(__name__)

ALLOWED_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/webp", "image/bmp", "image/tiff"]


@lru_cache()
def get_worker() -> ReceiptWorker:
    """Process-wide worker; one pipeline instance serves every request."""
    return ReceiptWorker()


def _error_status(error: ReceiptOCRError) -> int:
    if isinstance(error, PipelineBusyError):
        return 409
    if isinstance(error, EngineError):
        return 503
    return 400


async def _read_upload(file: UploadFile) -> bytes:
    """Validate type and size of an uploaded image and return its bytes."""
    if file.content_type not in ALLOWED_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type: {file.content_type}. Allowed: JPG, PNG, WEBP, BMP, TIFF"
        )

    file_data = await file.read()
    file_size_mb = len(file_data) / (1024 * 1024)

    if file_size_mb > settings.MAX_UPLOAD_MB:
        raise HTTPException(
            status_code=400,
            detail=f"File too large: {file_size_mb:.2f}MB. Maximum: {settings.MAX_UPLOAD_MB}MB"
        )

    return file_data


@router.post("", response_model=ScanResponse)
async def scan_receipt(
    file: UploadFile = File(...),
    worker: ReceiptWorker = Depends(get_worker),
):
    """
    Extract transactions from one receipt photo, entirely offline.

    Args:
        file: Uploaded receipt image

    Returns:
        Extracted transactions, raw OCR text and confidence
    """
    file_data = await _read_upload(file)

    request_id, future = worker.submit_receipt(file_data)
    try:
        result = await asyncio.wrap_future(future)
    except ReceiptOCRError as e:
        logger.warning("Scan failed", extra={
            "request_id": request_id,
            "filename": file.filename,
            "error": str(e)
        })
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    finally:
        worker.discard(request_id)

    logger.info("Receipt scanned", extra={
        "request_id": request_id,
        "filename": file.filename,
        "transactions": len(result.transactions)
    })
    return ScanResponse.from_result(result)


@router.post("/batch", response_model=ScanResponse)
async def scan_receipt_images(
    files: List[UploadFile] = File(...),
    worker: ReceiptWorker = Depends(get_worker),
):
    """
    Extract transactions from several overlapping photos of one long receipt.

    Files must be ordered top to bottom.
    """
    images = [await _read_upload(file) for file in files]

    request_id, future = worker.submit_multiple_images(images)
    try:
        result = await asyncio.wrap_future(future)
    except ReceiptOCRError as e:
        logger.warning("Batch scan failed", extra={
            "request_id": request_id,
            "files": len(files),
            "error": str(e)
        })
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    finally:
        worker.discard(request_id)

    return ScanResponse.from_result(result)


@router.get("/status", response_model=StatusResponse)
async def get_status(worker: ReceiptWorker = Depends(get_worker)):
    """Current pipeline state and preferences."""
    service = worker.service
    return StatusResponse.from_state(service.state, service.engine_mode, service.processing_mode)


@router.put("/preferences", response_model=StatusResponse)
async def update_preferences(
    update: PreferencesUpdate,
    worker: ReceiptWorker = Depends(get_worker),
):
    """Persist engine and/or processing mode."""
    service = worker.service
    if update.engine_mode is not None:
        service.set_engine_mode(update.engine_mode)
    if update.processing_mode is not None:
        service.set_processing_mode(update.processing_mode)

    logger.info("Preferences updated", extra={
        "engine_mode": service.engine_mode.value,
        "processing_mode": service.processing_mode.value
    })
    return StatusResponse.from_state(service.state, service.engine_mode, service.processing_mode)


@router.post("/preload", response_model=PreloadResponse)
async def preload_models(
    request: PreloadRequest,
    worker: ReceiptWorker = Depends(get_worker),
):
    """Download and initialise models so later scans work offline."""
    scripts = request.scripts or settings.DEFAULT_SCRIPTS
    try:
        estimated = get_estimated_model_size(scripts)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown script in {scripts}")

    request_id, future = worker.submit_preload(scripts, request.include_semantic_model)
    try:
        await asyncio.wrap_future(future)
    except ReceiptOCRError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    finally:
        worker.discard(request_id)

    return PreloadResponse(
        ready=worker.service.can_process_offline(),
        estimated_model_size=estimated,
    )
