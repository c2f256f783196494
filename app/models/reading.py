import enum

from sqlalchemy import Column, ForeignKey, Float, Date, String, Text, Integer, Enum, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.base import BaseModel


class ReadingSource(str, enum.Enum):
	MANUAL = "manual"
	OCR = "ocr"
	IMPORTED = "imported"


class Reading(Base, BaseModel):
	__tablename__ = "readings"

	meter_id = Column(UUID(as_uuid=True), ForeignKey("meters.id", ondelete="CASCADE"), nullable=False, index=True)
	reading_date = Column(Date, nullable=False)
	reading_value = Column(Float, nullable=False)
	source = Column(Enum(ReadingSource), nullable=False, default=ReadingSource.MANUAL)
	confidence = Column(Integer, nullable=True)
	image_url = Column(String(500), nullable=True)
	notes = Column(Text, nullable=True)

	# Relationships
	meter = relationship("Meter", back_populates="readings")

	__table_args__ = (
		UniqueConstraint("meter_id", "reading_date", name="unique_meter_reading_date"),
	)
