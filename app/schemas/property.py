from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict


class BuildingCreate(BaseModel):
	name: str = Field(..., min_length=1, max_length=255)
	address: Optional[str] = Field(None, max_length=500)
	city: Optional[str] = None
	postal_code: Optional[str] = Field(None, max_length=20)
	country: str = Field("DE", min_length=2, max_length=2)


class BuildingResponse(BuildingCreate):
	id: UUID
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class UnitCreate(BaseModel):
	unit_number: str = Field(..., min_length=1, max_length=50)
	floor: Optional[int] = None
	area: Optional[float] = Field(None, ge=0)


class UnitResponse(UnitCreate):
	id: UUID
	building_id: UUID
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class BuildingListResponse(BaseModel):
	total: int
	data: List[BuildingResponse]
