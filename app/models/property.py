from sqlalchemy import Column, ForeignKey, String, Integer, Float
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.base import BaseModel


class Building(Base, BaseModel):
	__tablename__ = "buildings"

	name = Column(String(255), nullable=False)
	address = Column(String(500))
	city = Column(String(255))
	postal_code = Column(String(20))
	country = Column(String(2), default="DE")

	units = relationship("Unit", back_populates="building", cascade="all, delete-orphan")
	meters = relationship("Meter", back_populates="building", cascade="all, delete-orphan")


class Unit(Base, BaseModel):
	__tablename__ = "units"

	building_id = Column(UUID(as_uuid=True), ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False, index=True)
	unit_number = Column(String(50), nullable=False)
	floor = Column(Integer)
	area = Column(Float)

	building = relationship("Building", back_populates="units")
	meters = relationship("Meter", back_populates="unit", cascade="all, delete-orphan")
