# app/services/consumption.py
"""
Per-reading consumption deltas.

Readings come in the order they are stored and shown: newest first. The
delta of reading i is value[i] - value[i + 1]; the oldest reading has none.
Only strictly positive deltas are meant to be displayed, a drop (meter swap,
corrected typo) is still returned so callers can aggregate or audit it.
"""
from typing import List, Optional, Sequence

from app.schemas.reading import ConsumptionEntry


def _entry(reading, consumption: Optional[float]) -> ConsumptionEntry:
    return ConsumptionEntry(
        reading_id=getattr(reading, "id", None),
        meter_id=getattr(reading, "meter_id", None),
        reading_date=reading.reading_date,
        reading_value=reading.reading_value,
        consumption=consumption,
        display=consumption is not None and consumption > 0,
    )


def compute_consumption(readings_desc: Sequence) -> List[ConsumptionEntry]:
    entries = []
    for i, reading in enumerate(readings_desc):
        if i + 1 < len(readings_desc):
            delta = reading.reading_value - readings_desc[i + 1].reading_value
        else:
            delta = None
        entries.append(_entry(reading, delta))
    return entries


def latest_consumption(readings_desc: Sequence) -> Optional[float]:
    """Delta of the newest reading against its predecessor, None without one."""
    if len(readings_desc) < 2:
        return None
    return readings_desc[0].reading_value - readings_desc[1].reading_value


def concatenate_lineage(histories: Sequence[Sequence]) -> List:
    """
    Join per-meter histories of a lineage, oldest meter first.

    Each history may be in any order; the result is newest first so it can go
    straight into compute_consumption. The swap boundary is an ordinary pair.
    """
    chronological = []
    for history in histories:
        chronological.extend(sorted(history, key=lambda r: r.reading_date))
    chronological.reverse()
    return chronological


def lineage_consumption(histories: Sequence[Sequence]) -> List[ConsumptionEntry]:
    return compute_consumption(concatenate_lineage(histories))
