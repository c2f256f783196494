import logging
import uuid
from typing import Any, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import InvalidValue, MissingRequiredField
from app.database import get_session
from app.models.task import TaskResult, TaskStatus
from app.schemas.imports import (
	ColumnMappingRequest,
	ImportCommitResponse,
	ImportParseResponse,
	ImportPreviewResponse,
)
from app.services.column_mapper import count_duplicates, map_rows, parse_csv, parse_xlsx, suggest_columns
from app.services.import_session import ImportSessionStore, get_import_sessions
from app.services.oracle_client import OracleClient, get_oracle_client
from app.services.reading_service import ReadingService

router = APIRouter()
logger = logging.getLogger(__name__)

ORACLE_TABLE_TYPES = {
	".xls": "application/vnd.ms-excel",
	".pdf": "application/pdf",
}
SAMPLE_ROWS = 5


def _decode_csv(content: bytes) -> str:
	try:
		return content.decode("utf-8-sig")
	except UnicodeDecodeError:
		# Excel exports on German Windows
		return content.decode("cp1252")


def enqueue_import(task_id: str, meter_id: UUID, rows: List[Dict[str, Any]], number_format: str, dropped: int = 0):
	from app.workers.tasks.import_tasks import import_readings

	import_readings.apply_async(
		kwargs={"meter_id": str(meter_id), "rows": rows, "number_format": number_format, "dropped": dropped},
		task_id=task_id,
	)


@router.post("/parse", response_model=ImportParseResponse)
async def parse_import_file(
		file: UploadFile = File(...),
		meter_id: UUID = Form(...),
		session: AsyncSession = Depends(get_session),
		sessions: ImportSessionStore = Depends(get_import_sessions),
		oracle: OracleClient = Depends(get_oracle_client),
):
	"""
	Step 1: read the file and suggest the date and value columns.
	CSV and XLSX are parsed locally, XLS and PDF go through table extraction.
	"""
	if not file.filename:
		raise MissingRequiredField("file")
	await ReadingService(session).existing_dates(meter_id)  # 404 for unknown meters

	content = await file.read()
	if len(content) > settings.MAX_UPLOAD_SIZE:
		raise InvalidValue(file.filename, "File too large")

	name = file.filename.lower()
	extension = name[name.rfind("."):] if "." in name else ""
	if extension in (".csv", ".txt"):
		columns, rows = parse_csv(_decode_csv(content))
	elif extension == ".xlsx":
		columns, rows = parse_xlsx(content)
	elif extension in ORACLE_TABLE_TYPES:
		columns, rows = await oracle.extract_table(content, ORACLE_TABLE_TYPES[extension])
		if not rows:
			raise MissingRequiredField("data", "No table rows found in the file")
	else:
		raise InvalidValue(file.filename, "Supported formats: CSV, XLSX, XLS, PDF")

	import_session = await sessions.create(meter_id, file.filename, columns, rows)
	date_column, value_column = suggest_columns(columns)

	return ImportParseResponse(
		token=import_session.token,
		file_name=file.filename,
		columns=columns,
		row_count=len(rows),
		suggested_date_column=date_column,
		suggested_value_column=value_column,
		sample=rows[:SAMPLE_ROWS],
	)


@router.post("/{token}/preview", response_model=ImportPreviewResponse)
async def preview_import(
		token: str,
		mapping: ColumnMappingRequest,
		session: AsyncSession = Depends(get_session),
		sessions: ImportSessionStore = Depends(get_import_sessions),
):
	"""Step 2: apply the column mapping. Shows which rows would overwrite; writes nothing."""
	import_session = await sessions.get(token)
	rows, dropped = map_rows(import_session.rows, mapping.date_column, mapping.value_column, mapping.number_format)
	existing = await ReadingService(session).existing_dates(import_session.meter_id)

	return ImportPreviewResponse(
		rows=rows,
		total=len(rows),
		duplicates=count_duplicates(rows, existing),
		dropped=dropped,
	)


@router.post("/{token}/commit", response_model=ImportCommitResponse)
async def commit_import(
		token: str,
		mapping: ColumnMappingRequest,
		session: AsyncSession = Depends(get_session),
		sessions: ImportSessionStore = Depends(get_import_sessions),
):
	"""Step 3: write the readings. Large files are imported by a background task."""
	import_session = await sessions.get(token)
	rows, dropped = map_rows(import_session.rows, mapping.date_column, mapping.value_column, mapping.number_format)
	if not rows:
		raise MissingRequiredField("data", "No row with a readable date and value")

	if len(rows) > settings.IMPORT_ASYNC_THRESHOLD:
		task_id = str(uuid.uuid4())
		session.add(TaskResult(
			id=task_id,
			task_name="import_readings",
			status=TaskStatus.PENDING,
			params={
				"meter_id": str(import_session.meter_id),
				"file_name": import_session.file_name,
				"rows": len(rows),
				"dropped": dropped,
			},
		))
		# the worker must find the task row
		await session.commit()
		enqueue_import(task_id, import_session.meter_id, [r.model_dump() for r in rows], mapping.number_format, dropped)
		await sessions.delete(token)

		logger.info(f"Import {token} queued as task {task_id}: {len(rows)} rows")
		return ImportCommitResponse(
			status="queued",
			task_id=task_id,
			status_url=f"{settings.API_V1_PREFIX}/tasks/{task_id}",
		)

	summary = await ReadingService(session).import_rows(
		import_session.meter_id,
		rows,
		number_format=mapping.number_format,
		dropped=dropped,
	)
	await sessions.delete(token)

	logger.info(f"Import {token} committed: {summary.message}")
	return ImportCommitResponse(status="completed", summary=summary)
