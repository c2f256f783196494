# schemas/meter.py
from datetime import date, datetime
from typing import Optional, List, Literal
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from app.models.meter import MeterKind
from app.schemas.oracle import EraPayload
from app.schemas.reading import ReadingResponse, ConsumptionEntry


class MeterBase(BaseModel):
    unit_id: Optional[UUID] = None
    building_id: Optional[UUID] = None
    meter_number: str = Field(..., max_length=100)
    meter_kind: MeterKind
    installation_date: Optional[date] = None


class MeterCreate(MeterBase):
    meter_number: Optional[str] = Field(None, max_length=100)


class MeterResponse(MeterBase):
    id: UUID
    replaced_by_id: Optional[UUID] = None
    lineage_id: UUID
    lineage_position: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MeterSummaryResponse(MeterResponse):
    unit: str
    last_reading: Optional[ReadingResponse] = None
    consumption: Optional[float] = None
    show_consumption: bool = False


class MeterDetailResponse(MeterResponse):
    unit: str
    readings: List[ReadingResponse]
    consumption: List[ConsumptionEntry]


class MeterListResponse(BaseModel):
    total: int
    data: List[MeterSummaryResponse]


class LineageResponse(BaseModel):
    lineage_id: UUID
    meters: List[MeterResponse]
    current_meter_id: UUID
    consumption: List[ConsumptionEntry]


class SuccessorLinkRequest(BaseModel):
    successor_id: UUID


class RepairChainRequest(BaseModel):
    meter_ids: List[UUID] = Field(..., min_length=2)


class SwapChainRequest(BaseModel):
    unit_id: Optional[UUID] = None
    building_id: Optional[UUID] = None
    meter_kind: MeterKind
    current_meter_number: Optional[str] = None
    eras: List[EraPayload] = Field(..., min_length=2)
    source: Literal["ocr", "imported"] = "ocr"


class EraResult(BaseModel):
    label: str
    meter: MeterResponse
    imported: int
    overwritten: int
    skipped: int


class SwapChainResponse(BaseModel):
    lineage_id: UUID
    eras: List[EraResult]
    current_meter_id: UUID
    message: str
