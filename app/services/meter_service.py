# app/services/meter_service.py

from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import MissingRequiredField, NotFound, PartialChainFailure
from app.models.meter import Meter, METER_KIND_UNITS
from app.models.property import Building, Unit
from app.models.reading import ReadingSource
from app.schemas.meter import (
    EraResult,
    LineageResponse,
    MeterCreate,
    MeterDetailResponse,
    MeterResponse,
    MeterSummaryResponse,
    SwapChainRequest,
    SwapChainResponse,
)
from app.schemas.reading import ReadingResponse
from app.services.consumption import compute_consumption, latest_consumption, lineage_consumption
from app.services.lineage import LineageChainer, link_successor, repair_chain, walk_lineage
from app.services.store import SqlAlchemyStore

logger = logging.getLogger(__name__)


class MeterService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = SqlAlchemyStore(session)

    async def _check_owner(self, unit_id: Optional[UUID], building_id: Optional[UUID]):
        if unit_id is None and building_id is None:
            raise MissingRequiredField("unit_id", "A meter belongs to a unit or to a building")
        if unit_id is not None and building_id is not None:
            raise MissingRequiredField("unit_id", "Give either unit_id or building_id, not both")
        if unit_id is not None and await self.session.get(Unit, unit_id) is None:
            raise NotFound(f"Unit {unit_id} not found")
        if building_id is not None and await self.session.get(Building, building_id) is None:
            raise NotFound(f"Building {building_id} not found")

    async def _require_meter(self, meter_id: UUID) -> Meter:
        meter = await self.store.get_meter(meter_id)
        if meter is None:
            raise NotFound(f"Meter {meter_id} not found")
        return meter

    async def create_meter(self, data: MeterCreate) -> Meter:
        meter_number = (data.meter_number or "").strip()
        if not meter_number:
            raise MissingRequiredField("meter_number")
        await self._check_owner(data.unit_id, data.building_id)

        meter = await self.store.create_meter(
            unit_id=data.unit_id,
            building_id=data.building_id,
            meter_number=meter_number,
            meter_kind=data.meter_kind,
            installation_date=data.installation_date,
        )
        logger.info(f"Meter created: {meter.meter_number} ({meter.meter_kind.value})")
        return meter

    async def list_meters(self, *, unit_id: Optional[UUID] = None, building_id: Optional[UUID] = None) -> List[MeterSummaryResponse]:
        """Meters with their last reading and the latest consumption delta."""
        summaries = []
        for meter in await self.store.list_meters(unit_id=unit_id, building_id=building_id):
            readings = await self.store.list_readings(meter.id)
            consumption = latest_consumption(readings)
            summaries.append(MeterSummaryResponse(
                **MeterResponse.model_validate(meter).model_dump(),
                unit=METER_KIND_UNITS[meter.meter_kind],
                last_reading=ReadingResponse.model_validate(readings[0]) if readings else None,
                consumption=consumption,
                show_consumption=consumption is not None and consumption > 0,
            ))
        return summaries

    async def get_meter_detail(self, meter_id: UUID) -> MeterDetailResponse:
        meter = await self._require_meter(meter_id)
        readings = await self.store.list_readings(meter_id)
        return MeterDetailResponse(
            **MeterResponse.model_validate(meter).model_dump(),
            unit=METER_KIND_UNITS[meter.meter_kind],
            readings=[ReadingResponse.model_validate(r) for r in readings],
            consumption=compute_consumption(readings),
        )

    async def delete_meter(self, meter_id: UUID):
        await self.store.delete_meter(meter_id)

    async def get_lineage(self, meter_id: UUID) -> LineageResponse:
        chain = await walk_lineage(self.store, meter_id)
        histories = [await self.store.list_readings(m.id) for m in chain]
        return LineageResponse(
            lineage_id=chain[0].lineage_id,
            meters=[MeterResponse.model_validate(m) for m in chain],
            current_meter_id=chain[-1].id,
            consumption=lineage_consumption(histories),
        )

    async def link_successor(self, meter_id: UUID, successor_id: UUID) -> Meter:
        return await link_successor(self.store, meter_id, successor_id)

    async def repair_chain(self, meter_ids: List[UUID]) -> List[Meter]:
        return await repair_chain(self.store, meter_ids)

    async def create_swap_chain(self, request: SwapChainRequest) -> SwapChainResponse:
        """Materialize confirmed eras as a chain of meters with their readings."""
        if not (request.current_meter_number or "").strip():
            raise MissingRequiredField("current_meter_number", "Confirm the number of the currently installed meter")
        await self._check_owner(request.unit_id, request.building_id)

        # all or nothing: a failed link discards the meters and readings of this chain
        try:
            async with self.session.begin_nested():
                result = await LineageChainer(self.store).chain(
                    request.eras,
                    current_meter_number=request.current_meter_number,
                    meter_kind=request.meter_kind,
                    unit_id=request.unit_id,
                    building_id=request.building_id,
                    source=ReadingSource(request.source),
                )
        except PartialChainFailure as e:
            raise PartialChainFailure(
                f"{e.message}; the swap chain was rolled back and nothing was saved, retry the request",
                meter_ids=[],
                unlinked=[],
                rolled_back=True,
            ) from e

        return SwapChainResponse(
            lineage_id=result.lineage_id,
            eras=[
                EraResult(
                    label=label,
                    meter=MeterResponse.model_validate(meter),
                    imported=tally.imported,
                    overwritten=tally.overwritten,
                    skipped=tally.skipped,
                )
                for label, meter, tally in zip(result.labels, result.meters, result.tallies)
            ],
            current_meter_id=result.current_meter.id,
            message=result.message(),
        )
