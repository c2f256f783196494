import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.core.errors import InvalidValue, MissingRequiredField
from app.config import settings
from app.models.meter import MeterKind
from app.schemas.oracle import DocumentExtraction, SingleValueReading
from app.services.oracle_client import OracleClient, get_oracle_client
from app.services.storage_service import StorageService, get_storage_service

router = APIRouter()
logger = logging.getLogger(__name__)

IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic", "image/heif"}
DOCUMENT_TYPES = IMAGE_TYPES | {"application/pdf"}


async def read_upload(file: UploadFile, allowed_types: set) -> bytes:
    if file is None or not file.filename:
        raise MissingRequiredField("file")
    content_type = (file.content_type or "").lower()
    if content_type not in allowed_types:
        raise InvalidValue(content_type, f"Unsupported file type: {content_type or 'unknown'}")
    content = await file.read()
    if not content:
        raise MissingRequiredField("file", "The uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise InvalidValue(file.filename, f"File too large, maximum {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB")
    return content


@router.post("/meter-reading", response_model=SingleValueReading)
async def read_meter_photo(
        file: UploadFile = File(...),
        meter_kind: Optional[MeterKind] = Form(None),
        meter_id: Optional[UUID] = Form(None),
        store_image: bool = Form(False),
        oracle: OracleClient = Depends(get_oracle_client),
        storage: StorageService = Depends(get_storage_service),
):
    """
    Read the value of a meter display from a photo. Nothing is saved as a
    reading; the client confirms the value and posts it to the readings
    endpoint. With store_image the photo is kept as evidence.
    """
    content = await read_upload(file, IMAGE_TYPES)
    reading = await oracle.read_meter_value(content, file.content_type, meter_kind)

    if store_image:
        reading.image_url = await storage.upload_evidence(content, file.filename, file.content_type, meter_id)

    logger.info(f"Meter photo read: {reading.value} ({reading.confidence}%)")
    return reading


@router.post("/document", response_model=DocumentExtraction)
async def extract_document(
        file: UploadFile = File(...),
        oracle: OracleClient = Depends(get_oracle_client),
):
    """
    Extract meter number and dated readings from a document or photo.
    Readings are split into eras when the document covers a meter exchange.
    """
    content = await read_upload(file, DOCUMENT_TYPES)
    extraction = await oracle.extract_document(content, file.content_type)
    logger.info(
        f"Document extracted: {len(extraction.readings)} readings, "
        f"{len(extraction.eras)} era(s), swap={extraction.meter_swap_detected}"
    )
    return extraction
