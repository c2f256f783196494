from typing import List, Tuple
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.errors import InvalidValue, NotFound
from app.models.reading import Reading
from app.monitoring.metrics import reading_writes
from app.schemas.imports import ImportSummary, NumberFormat, ParsedRow
from app.schemas.reading import ReadingCreate, ConsumptionEntry
from app.services.consumption import compute_consumption
from app.services.duplicate_resolver import ImportTally, apply_drafts, resolve
from app.services.normalizer import normalize_manual, normalize_ocr_single, normalize_import_row
from app.services.store import SqlAlchemyStore
import logging

logger = logging.getLogger(__name__)


class ReadingService:
	def __init__(self, session: AsyncSession):
		self.session = session
		self.store = SqlAlchemyStore(session)

	async def _require_meter(self, meter_id: UUID):
		meter = await self.store.get_meter(meter_id)
		if meter is None:
			raise NotFound(f"Meter {meter_id} not found")
		return meter

	async def record_reading(self, meter_id: UUID, data: ReadingCreate) -> Tuple[Reading, str]:
		"""Single manual or confirmed OCR reading. Returns the stored row and insert/overwrite."""
		await self._require_meter(meter_id)

		if data.source == "ocr":
			draft = normalize_ocr_single(
				data.reading_value,
				data.confidence,
				data.reading_date,
				meter_id=meter_id,
				image_url=data.image_url,
			)
			draft.notes = data.notes
		else:
			draft = normalize_manual(data.reading_value, data.reading_date, meter_id=meter_id, notes=data.notes)
			draft.image_url = data.image_url

		action = resolve(draft, await self.store.list_readings(meter_id))
		reading = await self.store.create_reading(draft)
		reading_writes.labels(action=action).inc()
		logger.info(f"Reading {draft.reading_date} for meter {meter_id}: {action}")
		return reading, action

	async def list_readings(self, meter_id: UUID) -> Tuple[List[Reading], List[ConsumptionEntry]]:
		await self._require_meter(meter_id)
		readings = await self.store.list_readings(meter_id)
		return readings, compute_consumption(readings)

	async def delete_reading(self, reading_id: UUID):
		await self.store.delete_reading(reading_id)
		logger.info(f"Reading {reading_id} deleted")

	async def import_rows(
			self,
			meter_id: UUID,
			rows: List[ParsedRow],
			number_format: NumberFormat = "auto",
			on_progress=None,
			dropped: int = 0,
	) -> ImportSummary:
		"""
		Commit mapped spreadsheet rows. Bad rows and failed writes count as skipped,
		as do the ``dropped`` rows the column mapper could not read.
		"""
		await self._require_meter(meter_id)

		tally = ImportTally()
		for _ in range(dropped):
			tally.skip()
		if dropped:
			tally.errors.append(f"{dropped} rows without a readable date or value")
		drafts = []
		for row in rows:
			try:
				drafts.append(normalize_import_row(row.date, row.value, meter_id=meter_id, number_format=number_format))
			except InvalidValue as e:
				tally.skip(e.message)

		await apply_drafts(self.store, meter_id, drafts, tally, on_progress=on_progress)
		return tally.summary()

	async def existing_dates(self, meter_id: UUID) -> List[str]:
		await self._require_meter(meter_id)
		return [r.reading_date.isoformat() for r in await self.store.list_readings(meter_id)]
