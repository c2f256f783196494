# app/services/swap_detector.py
"""
Meter swap detection for readings extracted from one document.

A cumulative counter only goes up. When a value is significantly lower than
the one before it, the document most likely covers a device exchange: the
readings are split into eras, one per physical meter, oldest first. The last
era is the meter currently installed.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from app.config import settings
from app.core.errors import InvalidValue
from app.schemas.oracle import DocumentExtraction, EraPayload, ExtractedReading
from app.services.normalizer import parse_iso_date, parse_number

logger = logging.getLogger(__name__)

SWAP_KEYWORDS = re.compile(
    r"replac|exchang|swap|new meter|getauscht|gewechselt|ersetzt|zählerwechsel|neuer zähler|tausch",
    re.IGNORECASE,
)


class SwapPolicy:
    """
    When is a drop between two consecutive readings a swap?

    drop_ratio: fraction of the previous value the reading must fall by
        (0.5: the new value is at most half of the previous one).
    min_absolute_drop: ignore drops smaller than this, whatever the ratio.
    An annotated row (notes mentioning a replacement) splits on any drop.
    """

    def __init__(self, drop_ratio: float = 0.5, min_absolute_drop: float = 0.0):
        if not 0 < drop_ratio <= 1:
            raise ValueError("drop_ratio must be in (0, 1]")
        self.drop_ratio = drop_ratio
        self.min_absolute_drop = min_absolute_drop

    @classmethod
    def from_settings(cls) -> "SwapPolicy":
        return cls(settings.SWAP_DROP_RATIO, settings.SWAP_MIN_ABSOLUTE_DROP)

    @staticmethod
    def is_annotated(row: ExtractedReading) -> bool:
        return bool(row.note and SWAP_KEYWORDS.search(row.note))

    def is_swap(self, previous: ExtractedReading, current: ExtractedReading) -> bool:
        drop = previous.value - current.value
        if drop <= 0 or drop < self.min_absolute_drop:
            return False
        if self.is_annotated(current):
            return True
        if previous.value <= 0:
            return False
        return drop >= previous.value * self.drop_ratio


class SwapDetection:
    def __init__(self, eras: List[EraPayload]):
        self.eras = eras

    @property
    def meter_swap_detected(self) -> bool:
        return len(self.eras) > 1

    @property
    def current_era(self) -> Optional[EraPayload]:
        return self.eras[-1] if self.eras else None


def _era_label(number: int, rows: List[ExtractedReading]) -> str:
    return f"Meter {number} ({rows[0].date} to {rows[-1].date})"


def _swap_note(previous: ExtractedReading, current: ExtractedReading) -> str:
    if current.note:
        return current.note
    return f"value dropped from {previous.value:g} to {current.value:g} on {current.date}"


def detect(rows: List[ExtractedReading], policy: Optional[SwapPolicy] = None) -> SwapDetection:
    """Split chronologically ascending rows into eras at every significant drop."""
    policy = policy or SwapPolicy.from_settings()
    if not rows:
        return SwapDetection([])

    eras: List[EraPayload] = []
    current: List[ExtractedReading] = [rows[0]]
    note: Optional[str] = None

    for previous, row in zip(rows, rows[1:]):
        if policy.is_swap(previous, row):
            eras.append(EraPayload(label=_era_label(len(eras) + 1, current), readings=current, swap_note=note))
            note = _swap_note(previous, row)
            current = [row]
        else:
            current.append(row)
    eras.append(EraPayload(label=_era_label(len(eras) + 1, current), readings=current, swap_note=note))

    if len(eras) > 1:
        logger.info(f"Meter swap detected: {len(rows)} readings split into {len(eras)} eras")
    return SwapDetection(eras)


def sanitize_rows(raw_rows: Any) -> List[ExtractedReading]:
    """Keep only rows carrying both a date and a numeric value."""
    if not isinstance(raw_rows, list):
        return []
    rows: List[ExtractedReading] = []
    for raw in raw_rows:
        if not isinstance(raw, dict):
            continue
        raw_date, raw_value = raw.get("date"), raw.get("value")
        if not raw_date or raw_value is None or raw_value == "":
            continue
        try:
            rows.append(ExtractedReading(
                date=parse_iso_date(raw_date).isoformat(),
                value=parse_number(raw_value),
                note=str(raw.get("note")).strip() if raw.get("note") else None,
            ))
        except InvalidValue:
            continue
    return rows


def _chronological(rows: Iterable[ExtractedReading]) -> List[ExtractedReading]:
    return sorted(rows, key=lambda r: r.date)


def build_extraction(raw: Dict[str, Any], policy: Optional[SwapPolicy] = None) -> DocumentExtraction:
    """
    Turn the oracle's loosely shaped JSON into a DocumentExtraction.

    Oracle eras are trusted once sanitized; a response with only a flat
    ``readings`` list goes through local detection instead.
    """
    meter_number = raw.get("meterNumber")
    meter_name = raw.get("meterName")
    try:
        confidence = int(min(max(float(raw.get("confidence") or 0), 0), 100))
    except (TypeError, ValueError):
        confidence = 0

    raw_eras = raw.get("eras")
    if isinstance(raw_eras, list) and raw_eras:
        sanitized = []
        for raw_era in raw_eras:
            if not isinstance(raw_era, dict):
                continue
            rows = _chronological(sanitize_rows(raw_era.get("readings")))
            if rows:
                sanitized.append((raw_era, rows))
        # the model does not always list eras oldest first
        sanitized.sort(key=lambda item: item[1][0].date)

        eras = []
        for i, (raw_era, rows) in enumerate(sanitized, start=1):
            eras.append(EraPayload(
                label=str(raw_era.get("label") or _era_label(i, rows)),
                readings=rows,
                swap_note=str(raw_era["swapNote"]).strip() if raw_era.get("swapNote") else None,
            ))
        swap = bool(raw.get("meterSwapDetected")) and len(eras) > 1
        if not swap and len(eras) > 1:
            merged = _chronological(r for era in eras for r in era.readings)
            eras = [EraPayload(label=_era_label(1, merged), readings=merged)]
    else:
        detection = detect(_chronological(sanitize_rows(raw.get("readings"))), policy)
        eras, swap = detection.eras, detection.meter_swap_detected

    return DocumentExtraction(
        meter_number=str(meter_number).strip() or None if meter_number else None,
        meter_name=str(meter_name).strip() or None if meter_name else None,
        confidence=confidence,
        meter_swap_detected=swap,
        eras=eras,
    )
