# app/services/store.py
"""
SQLAlchemy persistence for meters and readings.

Every write runs inside a SAVEPOINT so one failing row can be counted and
skipped without poisoning the request's transaction. Database errors surface
as PersistenceFailure.
"""
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound, PersistenceFailure
from app.models.meter import Meter
from app.models.reading import Reading
from app.schemas.reading import ReadingDraft

logger = logging.getLogger(__name__)


class SqlAlchemyStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_meter(self, **fields) -> Meter:
        meter = Meter(**fields)
        try:
            async with self.session.begin_nested():
                self.session.add(meter)
                await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not create meter {fields.get('meter_number')!r}: {e}") from e
        return meter

    async def create_reading(self, draft: ReadingDraft) -> Reading:
        """Insert, or overwrite the reading already stored for the same meter and date."""
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(
                    select(Reading).where(
                        Reading.meter_id == draft.meter_id,
                        Reading.reading_date == draft.reading_date,
                    )
                )
                reading = result.scalar_one_or_none()
                if reading is None:
                    reading = Reading(meter_id=draft.meter_id, reading_date=draft.reading_date)
                    self.session.add(reading)
                reading.reading_value = draft.reading_value
                reading.source = draft.source
                reading.confidence = draft.confidence
                reading.image_url = draft.image_url
                reading.notes = draft.notes
                await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not store reading of {draft.reading_date}: {e}") from e
        return reading

    async def link_successor(self, meter_id: UUID, successor_id: UUID):
        meter = await self.get_meter(meter_id)
        successor = await self.get_meter(successor_id)
        if meter is None or successor is None:
            raise NotFound(f"Meter {meter_id if meter is None else successor_id} not found")
        try:
            async with self.session.begin_nested():
                meter.replaced_by_id = successor_id
                # the successor may head a chain of its own: renumber all of it
                position = meter.lineage_position + 1
                current, seen = successor, {meter.id}
                while current is not None and current.id not in seen:
                    seen.add(current.id)
                    current.lineage_id = meter.lineage_id
                    current.lineage_position = position
                    position += 1
                    current = await self.get_meter(current.replaced_by_id) if current.replaced_by_id else None
                await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not link meter {meter_id} to {successor_id}: {e}") from e

    async def delete_meter(self, meter_id: UUID):
        meter = await self.get_meter(meter_id)
        if meter is None:
            raise NotFound(f"Meter {meter_id} not found")
        try:
            async with self.session.begin_nested():
                # the predecessor becomes current again
                await self.session.execute(
                    update(Meter).where(Meter.replaced_by_id == meter_id).values(replaced_by_id=None)
                )
                await self.session.delete(meter)
                await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not delete meter {meter_id}: {e}") from e
        logger.info(f"Meter {meter_id} deleted")

    async def get_meter(self, meter_id: UUID) -> Optional[Meter]:
        return await self.session.get(Meter, meter_id)

    async def get_predecessor(self, meter_id: UUID) -> Optional[Meter]:
        result = await self.session.execute(select(Meter).where(Meter.replaced_by_id == meter_id))
        return result.scalar_one_or_none()

    async def list_readings(self, meter_id: UUID) -> List[Reading]:
        """Newest first."""
        result = await self.session.execute(
            select(Reading).where(Reading.meter_id == meter_id).order_by(Reading.reading_date.desc())
        )
        return list(result.scalars().all())

    async def get_reading(self, reading_id: UUID) -> Optional[Reading]:
        return await self.session.get(Reading, reading_id)

    async def delete_reading(self, reading_id: UUID):
        reading = await self.get_reading(reading_id)
        if reading is None:
            raise NotFound(f"Reading {reading_id} not found")
        await self.session.delete(reading)
        await self.session.flush()

    async def list_meters(self, *, unit_id: Optional[UUID] = None, building_id: Optional[UUID] = None) -> List[Meter]:
        query = select(Meter)
        if unit_id is not None:
            query = query.where(Meter.unit_id == unit_id)
        if building_id is not None:
            query = query.where(Meter.building_id == building_id)
        result = await self.session.execute(query.order_by(Meter.lineage_id, Meter.lineage_position, Meter.created_at))
        return list(result.scalars().all())
