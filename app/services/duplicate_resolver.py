# app/services/duplicate_resolver.py
import logging
from datetime import date
from typing import Iterable, List, Optional, Union

from app.monitoring.metrics import reading_writes
from app.schemas.imports import ImportSummary
from app.schemas.reading import ReadingDraft

logger = logging.getLogger(__name__)

INSERT = "insert"
OVERWRITE = "overwrite"


def _reading_date(reading) -> date:
    if isinstance(reading, date):
        return reading
    if isinstance(reading, str):
        return date.fromisoformat(reading[:10])
    return reading.reading_date


def resolve(candidate: ReadingDraft, existing: Iterable[Union[date, str, object]]) -> str:
    """
    insert when no reading exists for the candidate's calendar date, else overwrite.

    ``existing`` may hold stored readings, dates or ISO date strings. A collision
    never blocks the write; the later value wins.
    """
    target = candidate.reading_date
    for reading in existing:
        if _reading_date(reading) == target:
            return OVERWRITE
    return INSERT


class ImportTally:
    """Running imported / overwritten / skipped counters of one batch."""

    def __init__(self):
        self.imported = 0
        self.overwritten = 0
        self.skipped = 0
        self.errors: List[str] = []

    @property
    def total(self) -> int:
        return self.imported + self.overwritten + self.skipped

    def record(self, action: str):
        if action == OVERWRITE:
            self.overwritten += 1
        else:
            self.imported += 1
        reading_writes.labels(action=action).inc()

    def skip(self, reason: Optional[str] = None):
        self.skipped += 1
        if reason:
            self.errors.append(reason)
        reading_writes.labels(action="skipped").inc()

    def message(self) -> str:
        return f"{self.imported} imported, {self.overwritten} overwritten, {self.skipped} skipped"

    def summary(self) -> ImportSummary:
        return ImportSummary(
            imported=self.imported,
            overwritten=self.overwritten,
            skipped=self.skipped,
            total=self.total,
            errors=self.errors[:200],
            message=self.message(),
        )


async def apply_drafts(store, meter_id, drafts: Iterable[ReadingDraft], tally: Optional[ImportTally] = None, on_progress=None) -> ImportTally:
    """
    Write drafts to one meter sequentially, resolving each against what is
    already stored (including drafts written earlier in the same batch).

    A failing write is counted as skipped and the loop moves on.
    ``on_progress(done)`` is awaited after every item when given.
    """
    tally = tally or ImportTally()
    existing = {r.reading_date for r in await store.list_readings(meter_id)}

    for done, draft in enumerate(drafts, start=1):
        draft = draft.model_copy(update={"meter_id": meter_id})
        action = resolve(draft, existing)
        try:
            await store.create_reading(draft)
        except Exception as e:
            logger.warning(f"Reading {draft.reading_date} for meter {meter_id} skipped: {e}")
            tally.skip(f"{draft.reading_date.isoformat()}: {e}")
        else:
            tally.record(action)
            existing.add(draft.reading_date)
        if on_progress is not None:
            await on_progress(done)

    logger.info(f"Meter {meter_id}: {tally.message()}")
    return tally
