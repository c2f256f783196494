from datetime import date, datetime
from typing import Optional, Literal, List, Union
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from app.models.reading import ReadingSource

WriteAction = Literal["insert", "overwrite"]


class ReadingDraft(BaseModel):
	"""Canonical reading produced by the normalizer, not yet persisted"""
	meter_id: Optional[UUID] = None
	reading_date: date
	reading_value: float
	source: ReadingSource
	confidence: Optional[int] = Field(None, ge=0, le=100)
	image_url: Optional[str] = None
	notes: Optional[str] = None


class ReadingCreate(BaseModel):
	# Raw user input; "12345,67" and 12345.67 are both accepted
	reading_value: Union[str, float]
	reading_date: Optional[date] = None
	source: Literal["manual", "ocr"] = "manual"
	confidence: Optional[float] = None
	image_url: Optional[str] = None
	notes: Optional[str] = None


class ReadingResponse(BaseModel):
	id: UUID
	meter_id: UUID
	reading_date: date
	reading_value: float
	source: ReadingSource
	confidence: Optional[int] = None
	image_url: Optional[str] = None
	notes: Optional[str] = None
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class ReadingWriteResponse(BaseModel):
	action: WriteAction
	reading: ReadingResponse


class ConsumptionEntry(BaseModel):
	reading_id: Optional[UUID] = None
	meter_id: Optional[UUID] = None
	reading_date: date
	reading_value: float
	consumption: Optional[float] = None  # None: no prior reading
	display: bool = False  # only strictly positive deltas get a badge


class ReadingListResponse(BaseModel):
	total: int
	data: List[ReadingResponse]
	consumption: List[ConsumptionEntry]
