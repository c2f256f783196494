# app/core/errors.py
from typing import List, Optional, Tuple


class MeterLedgerError(Exception):
    """Base class for domain errors surfaced to API clients."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "detail": self.message}


class InvalidValue(MeterLedgerError):
    """A numeric field or cell could not be parsed."""

    status_code = 422

    def __init__(self, raw, message: Optional[str] = None):
        super().__init__(message or f"Invalid numeric value: {raw!r}")
        self.raw = raw


class MissingRequiredField(MeterLedgerError):
    status_code = 400

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"Missing required field: {field}")
        self.field = field


class NotFound(MeterLedgerError):
    status_code = 404


class OracleUnavailable(MeterLedgerError):
    """The extraction service failed or answered with an unusable structure."""

    status_code = 502

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["fallback"] = "manual_entry"
        return data


class PersistenceFailure(MeterLedgerError):
    status_code = 500


class PartialChainFailure(MeterLedgerError):
    """
    At least one replaced_by link could not be written. ``rolled_back`` tells
    whether the chain was discarded or its meters still exist for repair_chain.
    """

    status_code = 409

    def __init__(self, message: str, meter_ids: List[str], unlinked: List[Tuple[str, str]], rolled_back: bool = False):
        super().__init__(message)
        self.meter_ids = meter_ids
        self.unlinked = unlinked
        self.rolled_back = rolled_back

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["rolled_back"] = self.rolled_back
        if not self.rolled_back:
            # only meaningful while the meters still exist
            data["meter_ids"] = self.meter_ids
            data["unlinked"] = [{"meter_id": a, "successor_id": b} for a, b in self.unlinked]
        return data
