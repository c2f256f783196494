from typing import Dict, List, Literal, Optional

from pydantic import BaseModel

NumberFormat = Literal["auto", "decimal_comma", "decimal_point"]


class ParsedRow(BaseModel):
	date: str  # ISO YYYY-MM-DD
	value: float


class ImportParseResponse(BaseModel):
	token: str
	file_name: str
	columns: List[str]
	row_count: int
	suggested_date_column: Optional[str] = None
	suggested_value_column: Optional[str] = None
	sample: List[Dict[str, str]] = []


class ColumnMappingRequest(BaseModel):
	date_column: Optional[str] = None
	value_column: Optional[str] = None
	number_format: NumberFormat = "auto"


class ImportPreviewResponse(BaseModel):
	rows: List[ParsedRow]
	total: int
	duplicates: int
	dropped: int


class ImportSummary(BaseModel):
	imported: int = 0
	overwritten: int = 0
	skipped: int = 0
	total: int = 0
	errors: List[str] = []
	message: str = ""


class ImportCommitResponse(BaseModel):
	status: Literal["completed", "queued"]
	summary: Optional[ImportSummary] = None
	task_id: Optional[str] = None
	status_url: Optional[str] = None
