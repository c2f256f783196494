# schemas/oracle.py
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class ExtractedReading(BaseModel):
    date: str  # YYYY-MM-DD as returned by the oracle
    value: float
    note: Optional[str] = None


class EraPayload(BaseModel):
    label: str
    readings: List[ExtractedReading] = []
    swap_note: Optional[str] = None


class DocumentExtraction(BaseModel):
    """Document oracle result.

    ``meter_swap_detected`` is the discriminant: False carries exactly one era,
    True carries two or more in chronological order (the last one is current).
    An extraction with no meter number and no readings is ``empty``.
    """

    meter_number: Optional[str] = None
    meter_name: Optional[str] = None
    confidence: int = Field(0, ge=0, le=100)
    meter_swap_detected: bool = False
    eras: List[EraPayload] = []

    @model_validator(mode="after")
    def check_discriminant(self):
        if self.meter_swap_detected and len(self.eras) < 2:
            raise ValueError("a swap extraction needs at least two eras")
        if not self.meter_swap_detected and len(self.eras) > 1:
            raise ValueError("an extraction without swap carries a single era")
        return self

    @property
    def readings(self) -> List[ExtractedReading]:
        return [r for era in self.eras for r in era.readings]

    @property
    def empty(self) -> bool:
        return not self.meter_number and not self.readings


class SingleValueReading(BaseModel):
    value: float
    confidence: int = Field(85, ge=0, le=100)
    image_url: Optional[str] = None
