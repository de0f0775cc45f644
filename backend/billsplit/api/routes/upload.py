"""API routes for receipt image upload and retrieval."""

from __future__ import annotations

import os

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse, Response

from billsplit.api.dependencies import get_user
from billsplit.core.config import settings
from billsplit.core.observability import sentry_breadcrumb
from billsplit.models.schemas import ReceiptUploadRead
from billsplit.models.tables import User
from billsplit.services.ocr_service import ExtractionFailed, OCRService
from billsplit.services.storage_service import StorageService

router = APIRouter(prefix="/upload", tags=["upload"])


def get_storage_service() -> StorageService:
    return StorageService()


def get_ocr_service() -> OCRService:
    return OCRService()


def _image_url(filename: str) -> str:
    return f"{settings.API_PREFIX}/upload/receipt/{filename}"


@router.post("/receipt", response_model=ReceiptUploadRead, status_code=status.HTTP_201_CREATED)
async def upload_receipt(
    file: UploadFile = File(...),
    user: User = Depends(get_user),
    storage: StorageService = Depends(get_storage_service),
    ocr: OCRService = Depends(get_ocr_service),
) -> ReceiptUploadRead:
    """Store a receipt image and return the text Tesseract reads from it."""
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in settings.ALLOWED_EXTENSIONS or not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")

    contents = await file.read()
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
        )
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")

    _, stored_name = storage.save_bytes(user.id, file.filename or f"receipt{ext}", contents)
    image_url = _image_url(stored_name)
    sentry_breadcrumb(category="upload", message="receipt.stored", data={"bytes": len(contents)})

    try:
        result = await ocr.extract_text_async(contents)
    except ExtractionFailed as exc:
        raise HTTPException(
            status_code=422,
            detail={"error": str(exc), "image_url": image_url, "filename": stored_name},
        )
    return ReceiptUploadRead(image_url=image_url, filename=stored_name, text=result.text, lines=result.lines)


@router.get("/receipt/{filename}")
async def get_receipt_image(
    filename: str,
    user: User = Depends(get_user),
    storage: StorageService = Depends(get_storage_service),
):
    path = storage.resolve(user.id, filename)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path=str(path), filename=filename)


@router.delete("/receipt/{filename}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_receipt_image(
    filename: str,
    user: User = Depends(get_user),
    storage: StorageService = Depends(get_storage_service),
) -> Response:
    if not storage.delete(user.id, filename):
        raise HTTPException(status_code=404, detail="File not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
