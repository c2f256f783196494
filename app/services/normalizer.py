# app/services/normalizer.py
"""
Turns every way a reading can arrive (manual form, single OCR value,
OCR document rows, spreadsheet cells) into a canonical ReadingDraft.

Nothing here touches the database: the caller persists the draft after the
duplicate resolver decided between insert and overwrite.
"""
import logging
import math
import re
from datetime import date
from typing import Iterable, List, Optional, Tuple, Union
from uuid import UUID

from app.core.errors import InvalidValue
from app.models.reading import ReadingSource
from app.schemas.imports import NumberFormat
from app.schemas.oracle import ExtractedReading
from app.schemas.reading import ReadingDraft

logger = logging.getLogger(__name__)

_NUMERIC_NOISE = re.compile(r"[^\d.,]")


def parse_number(raw: Union[str, int, float, None], number_format: NumberFormat = "auto") -> float:
    """
    Parse a user-entered or extracted number.

    ``auto`` accepts either ``,`` or ``.`` as decimal separator and nothing else:
    "12,5" -> 12.5, "12.5" -> 12.5, but "12.345,67" is rejected because it
    collapses to "12.345.67". Pass ``decimal_comma`` or ``decimal_point`` when the
    thousands separator is known.
    """
    if raw is None:
        raise InvalidValue(raw)
    if isinstance(raw, bool):
        raise InvalidValue(raw)
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        cleaned = _NUMERIC_NOISE.sub("", str(raw).strip())
        if number_format == "decimal_comma":
            cleaned = cleaned.replace(".", "").replace(",", ".")
        elif number_format == "decimal_point":
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".")
        try:
            value = float(cleaned)
        except ValueError:
            raise InvalidValue(raw)
    if not math.isfinite(value):
        raise InvalidValue(raw)
    return value


def parse_iso_date(raw) -> date:
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        raise InvalidValue(raw, f"Invalid date: {raw!r}")


def _clamp_confidence(confidence) -> Optional[int]:
    if confidence is None:
        return None
    try:
        value = float(confidence)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return int(round(min(max(value, 0.0), 100.0)))


def normalize_manual(
    raw_value: Union[str, float],
    reading_date: Optional[date] = None,
    *,
    meter_id: Optional[UUID] = None,
    notes: Optional[str] = None,
) -> ReadingDraft:
    value = parse_number(raw_value)
    return ReadingDraft(
        meter_id=meter_id,
        reading_date=reading_date or date.today(),
        reading_value=value,
        source=ReadingSource.MANUAL,
        notes=notes,
    )


def normalize_ocr_single(
    value: Union[str, float],
    confidence=None,
    reading_date: Optional[date] = None,
    *,
    meter_id: Optional[UUID] = None,
    image_url: Optional[str] = None,
) -> ReadingDraft:
    return ReadingDraft(
        meter_id=meter_id,
        reading_date=reading_date or date.today(),
        reading_value=parse_number(value),
        source=ReadingSource.OCR,
        confidence=_clamp_confidence(confidence),
        image_url=image_url,
    )


def normalize_ocr_multi(
    rows: Iterable[Union[ExtractedReading, Tuple[str, float]]],
    *,
    meter_id: Optional[UUID] = None,
    source: ReadingSource = ReadingSource.OCR,
    confidence=None,
) -> List[ReadingDraft]:
    """Oracle rows with a broken date or value are dropped, the rest kept in order."""
    drafts: List[ReadingDraft] = []
    for row in rows:
        if isinstance(row, ExtractedReading):
            raw_date, raw_value, note = row.date, row.value, row.note
        else:
            raw_date, raw_value = row
            note = None
        try:
            drafts.append(ReadingDraft(
                meter_id=meter_id,
                reading_date=parse_iso_date(raw_date),
                reading_value=parse_number(raw_value),
                source=source,
                confidence=_clamp_confidence(confidence) if source == ReadingSource.OCR else None,
                notes=note,
            ))
        except InvalidValue as e:
            logger.debug(f"Dropping extracted row {raw_date!r}/{raw_value!r}: {e.message}")
    return drafts


def normalize_import_row(
    date_cell: str,
    value_cell: str,
    *,
    meter_id: Optional[UUID] = None,
    number_format: NumberFormat = "auto",
) -> ReadingDraft:
    """Spreadsheet cells, date already ISO formatted by the column mapper or raw."""
    from app.services.column_mapper import parse_date

    parsed = parse_date(date_cell) if not isinstance(date_cell, date) else date_cell
    if parsed is None:
        raise InvalidValue(date_cell, f"Unrecognized date: {date_cell!r}")
    return ReadingDraft(
        meter_id=meter_id,
        reading_date=parsed,
        reading_value=parse_number(value_cell, number_format),
        source=ReadingSource.IMPORTED,
    )
