# app/services/lineage.py
"""
Materializes a detected meter swap as a chain of meters.

One meter is created per era, oldest first, and each non-final meter points
at its successor through ``replaced_by_id``. All meters of a chain share a
``lineage_id``; ``lineage_position`` orders them. Meter numbers of retired
eras are cosmetic ("<number>-1", "<number>-2", ...).

The store is anything offering the async persistence calls used below
(see app/services/store.py).
"""
import logging
import uuid
from datetime import date
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from app.core.errors import (
    InvalidValue,
    MissingRequiredField,
    NotFound,
    PartialChainFailure,
    PersistenceFailure,
)
from app.models.meter import MeterKind
from app.models.reading import ReadingSource
from app.monitoring.metrics import swap_chains
from app.schemas.oracle import EraPayload
from app.services.duplicate_resolver import ImportTally, apply_drafts
from app.services.normalizer import normalize_ocr_multi, parse_iso_date, parse_number

logger = logging.getLogger(__name__)


def derive_meter_numbers(current_number: str, era_count: int) -> List[str]:
    """Earlier eras get "<number>-<ordinal>", the last one the number verbatim."""
    current_number = (current_number or "").strip()
    if not current_number:
        raise MissingRequiredField("meter_number", "The current meter number is required")
    return [f"{current_number}-{i}" for i in range(1, era_count)] + [current_number]


def _era_span(era: EraPayload) -> Optional[Tuple[date, date]]:
    dates = []
    for row in era.readings:
        try:
            dates.append(parse_iso_date(row.date))
        except InvalidValue:
            continue
    return (min(dates), max(dates)) if dates else None


def _check_chronological(eras: Sequence[EraPayload]):
    """Each era must start after the previous one ends; the last era is the current meter."""
    previous = None
    for era in eras:
        span = _era_span(era)
        if span is None:
            continue
        if previous is not None and span[0] <= previous[1]:
            raise InvalidValue(
                era.label,
                f"Era {era.label!r} starts on {span[0]} but the previous era ends on {previous[1]}; "
                f"eras must be given oldest first and must not overlap",
            )
        previous = span


class ChainResult:
    def __init__(self, lineage_id: UUID, meters: list, tallies: List[ImportTally], labels: List[str]):
        self.lineage_id = lineage_id
        self.meters = meters
        self.tallies = tallies
        self.labels = labels

    @property
    def current_meter(self):
        return self.meters[-1]

    def message(self) -> str:
        imported = sum(t.imported for t in self.tallies)
        overwritten = sum(t.overwritten for t in self.tallies)
        skipped = sum(t.skipped for t in self.tallies)
        return (
            f"{len(self.meters)} meters chained: "
            f"{imported} imported, {overwritten} overwritten, {skipped} skipped"
        )


class LineageChainer:
    def __init__(self, store):
        self.store = store

    async def _persist_era(self, meter_id: UUID, era: EraPayload, source: ReadingSource) -> ImportTally:
        tally = ImportTally()
        valid = []
        for row in era.readings:
            # count malformed rows instead of dropping them silently
            try:
                parse_iso_date(row.date)
                parse_number(row.value)
            except InvalidValue as e:
                tally.skip(e.message)
                continue
            valid.append(row)
        drafts = normalize_ocr_multi(valid, meter_id=meter_id, source=source)
        return await apply_drafts(self.store, meter_id, drafts, tally)

    async def _compensate(self, meters: list):
        for meter in reversed(meters):
            try:
                await self.store.delete_meter(meter.id)
            except Exception as e:
                logger.error(f"Compensating delete of meter {meter.id} failed: {e}")

    async def chain(
        self,
        eras: Sequence[EraPayload],
        *,
        current_meter_number: str,
        meter_kind: MeterKind,
        unit_id: Optional[UUID] = None,
        building_id: Optional[UUID] = None,
        source: ReadingSource = ReadingSource.OCR,
    ) -> ChainResult:
        if len(eras) < 2:
            raise InvalidValue(len(eras), "A meter swap needs at least two eras")
        if (unit_id is None) == (building_id is None):
            raise MissingRequiredField("unit_id", "Exactly one of unit_id or building_id is required")
        _check_chronological(eras)

        numbers = derive_meter_numbers(current_meter_number, len(eras))
        lineage_id = uuid.uuid4()
        meters = []
        tallies: List[ImportTally] = []

        for position, (era, number) in enumerate(zip(eras, numbers)):
            try:
                meter = await self.store.create_meter(
                    meter_number=number,
                    meter_kind=meter_kind,
                    unit_id=unit_id,
                    building_id=building_id,
                    lineage_id=lineage_id,
                    lineage_position=position,
                )
            except Exception as e:
                logger.error(f"Creating meter {number!r} for era {era.label!r} failed: {e}")
                await self._compensate(meters)
                swap_chains.labels(outcome="failed").inc()
                raise PersistenceFailure(
                    f"Could not create meter {number!r} for era {era.label!r}; "
                    f"{len(meters)} meter(s) created in this run were removed"
                ) from e
            meters.append(meter)
            tallies.append(await self._persist_era(meter.id, era, source))

        unlinked: List[Tuple[str, str]] = []
        for predecessor, successor in zip(meters, meters[1:]):
            try:
                await self.store.link_successor(predecessor.id, successor.id)
            except Exception as e:
                logger.error(f"Linking meter {predecessor.id} -> {successor.id} failed: {e}")
                unlinked.append((str(predecessor.id), str(successor.id)))

        if unlinked:
            swap_chains.labels(outcome="partial").inc()
            raise PartialChainFailure(
                f"{len(unlinked)} of {len(meters) - 1} replacement links could not be written",
                meter_ids=[str(m.id) for m in meters],
                unlinked=unlinked,
            )

        swap_chains.labels(outcome="created").inc()
        result = ChainResult(lineage_id, meters, tallies, [era.label for era in eras])
        logger.info(f"Lineage {lineage_id}: {result.message()}")
        return result


async def walk_lineage(store, meter_id: UUID) -> list:
    """All meters of the chain containing ``meter_id``, oldest first."""
    meter = await store.get_meter(meter_id)
    if meter is None:
        raise NotFound(f"Meter {meter_id} not found")

    seen = {meter.id}
    oldest = meter
    while True:
        predecessor = await store.get_predecessor(oldest.id)
        if predecessor is None:
            break
        if predecessor.id in seen:
            raise PersistenceFailure(f"Replacement cycle detected at meter {predecessor.id}")
        seen.add(predecessor.id)
        oldest = predecessor

    chain = [oldest]
    visited = {oldest.id}
    while chain[-1].replaced_by_id is not None:
        next_id = chain[-1].replaced_by_id
        if next_id in visited:
            raise PersistenceFailure(f"Replacement cycle detected at meter {next_id}")
        successor = await store.get_meter(next_id)
        if successor is None:
            break
        visited.add(next_id)
        chain.append(successor)
    return chain


async def link_successor(store, meter_id: UUID, successor_id: UUID):
    """Manually record that ``successor_id`` replaced ``meter_id``."""
    if meter_id == successor_id:
        raise InvalidValue(str(successor_id), "A meter cannot replace itself")
    meter = await store.get_meter(meter_id)
    if meter is None:
        raise NotFound(f"Meter {meter_id} not found")
    successor = await store.get_meter(successor_id)
    if successor is None:
        raise NotFound(f"Meter {successor_id} not found")

    if meter.replaced_by_id is not None:
        if meter.replaced_by_id == successor_id:
            return meter
        raise InvalidValue(str(successor_id), f"Meter {meter_id} is already replaced by {meter.replaced_by_id}")
    existing = await store.get_predecessor(successor_id)
    if existing is not None:
        raise InvalidValue(str(successor_id), f"Meter {successor_id} already replaces {existing.id}")
    if meter.meter_kind != successor.meter_kind:
        raise InvalidValue(str(successor_id), "Replacement meter must be of the same kind")
    # the successor must not lead back to the predecessor
    if any(m.id == meter_id for m in await walk_lineage(store, successor_id)):
        raise InvalidValue(str(successor_id), "Link would create a replacement cycle")

    await store.link_successor(meter_id, successor_id)
    logger.info(f"Meter {meter_id} replaced by {successor_id}")
    return await store.get_meter(meter_id)


async def repair_chain(store, meter_ids: Sequence[UUID]) -> list:
    """
    Link the given meters in order, skipping links already in place.

    Recovery for a PartialChainFailure. Returns the meters oldest first.
    """
    if len(meter_ids) < 2:
        raise InvalidValue(len(meter_ids), "A chain needs at least two meters")

    unlinked: List[Tuple[str, str]] = []
    for predecessor_id, successor_id in zip(meter_ids, meter_ids[1:]):
        try:
            await link_successor(store, predecessor_id, successor_id)
        except NotFound:
            raise
        except Exception as e:
            logger.error(f"Repair link {predecessor_id} -> {successor_id} failed: {e}")
            unlinked.append((str(predecessor_id), str(successor_id)))

    if unlinked:
        raise PartialChainFailure(
            f"{len(unlinked)} replacement links could not be repaired",
            meter_ids=[str(m) for m in meter_ids],
            unlinked=unlinked,
        )
    return [await store.get_meter(m) for m in meter_ids]
