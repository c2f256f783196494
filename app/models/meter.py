import enum
import uuid

from sqlalchemy import Column, String, Date, ForeignKey, Integer, CheckConstraint, Enum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.base import BaseModel


class MeterKind(str, enum.Enum):
	ELECTRICITY = "electricity"
	GAS = "gas"
	WATER_COLD = "water_cold"
	WATER_HOT = "water_hot"
	HEATING = "heating"


METER_KIND_UNITS = {
	MeterKind.ELECTRICITY: "kWh",
	MeterKind.GAS: "m³",
	MeterKind.WATER_COLD: "m³",
	MeterKind.WATER_HOT: "m³",
	MeterKind.HEATING: "kWh",
}


class Meter(Base, BaseModel):
	__tablename__ = "meters"

	# Exactly one owner: a unit or the building itself
	unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="CASCADE"), nullable=True, index=True)
	building_id = Column(UUID(as_uuid=True), ForeignKey("buildings.id", ondelete="CASCADE"), nullable=True, index=True)

	meter_number = Column(String(100), nullable=False, index=True)  # cosmetic, not unique
	meter_kind = Column(Enum(MeterKind), nullable=False)
	installation_date = Column(Date, nullable=True)

	# Lineage: successor link plus a synthetic chain identity for ordering
	replaced_by_id = Column(UUID(as_uuid=True), ForeignKey("meters.id", ondelete="SET NULL"), nullable=True, unique=True)
	lineage_id = Column(UUID(as_uuid=True), nullable=False, index=True, default=uuid.uuid4)
	lineage_position = Column(Integer, nullable=False, default=0)

	unit = relationship("Unit", back_populates="meters")
	building = relationship("Building", back_populates="meters")
	readings = relationship(
		"Reading",
		back_populates="meter",
		cascade="all, delete-orphan",
		order_by="Reading.reading_date.desc()",
	)

	__table_args__ = (
		CheckConstraint(
			"(unit_id IS NULL) <> (building_id IS NULL)",
			name="meter_single_owner",
		),
	)

	@property
	def is_retired(self) -> bool:
		return self.replaced_by_id is not None
