import logging
from uuid import UUID
from fastapi import APIRouter, status, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_session
from app.schemas.reading import ReadingCreate, ReadingResponse, ReadingWriteResponse, ReadingListResponse
from app.services.reading_service import ReadingService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/meters/{meter_id}/readings", response_model=ReadingWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_reading(
		meter_id: UUID,
		reading_data: ReadingCreate,
		session: AsyncSession = Depends(get_session),
):
	"""
	Record a manual or confirmed OCR reading.
	A reading already stored for the same date is overwritten.
	"""
	reading, action = await ReadingService(session).record_reading(meter_id, reading_data)
	return ReadingWriteResponse(action=action, reading=ReadingResponse.model_validate(reading))


@router.get("/meters/{meter_id}/readings", response_model=ReadingListResponse)
async def list_readings(
		meter_id: UUID,
		session: AsyncSession = Depends(get_session),
):
	"""Readings newest first, with consumption since the previous reading"""
	readings, consumption = await ReadingService(session).list_readings(meter_id)
	return ReadingListResponse(
		total=len(readings),
		data=[ReadingResponse.model_validate(r) for r in readings],
		consumption=consumption,
	)


@router.delete("/readings/{reading_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reading(
		reading_id: UUID,
		session: AsyncSession = Depends(get_session),
):
	await ReadingService(session).delete_reading(reading_id)
