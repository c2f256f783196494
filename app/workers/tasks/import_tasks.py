# =====================================
# app/workers/tasks/import_tasks.py
# =====================================
import asyncio
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, List
from uuid import UUID

from app.core.celery_app import celery_app
from app.database import AsyncSessionLocal, engine
from app.models.task import TaskResult, TaskStatus
from app.schemas.imports import ParsedRow
from app.services.reading_service import ReadingService

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 50


@celery_app.task(bind=True, name="tasks.import_readings")
def import_readings(
		self,
		meter_id: str,
		rows: List[Dict[str, Any]],
		number_format: str = "auto",
		dropped: int = 0,
) -> Dict[str, Any]:
	"""
	Commit a large spreadsheet import in the background
	"""
	task_id = self.request.id

	try:
		self.update_state(
			state="PROCESSING",
			meta={"status": "Starting import...", "done": 0, "total": len(rows)}
		)

		loop = asyncio.new_event_loop()
		asyncio.set_event_loop(loop)
		try:
			result = loop.run_until_complete(
				_import_readings_async(
					task_id=task_id,
					meter_id=UUID(meter_id),
					rows=[ParsedRow(**r) for r in rows],
					number_format=number_format,
					dropped=dropped,
					update_callback=partial(_update_import_progress, self),
				)
			)
		finally:
			# pooled connections belong to this loop
			loop.run_until_complete(engine.dispose())
			loop.close()

		return result

	except Exception as e:
		logger.error(f"Import task {task_id} failed: {str(e)}")
		raise


def _update_import_progress(task, done: int, total: int):
	task.update_state(
		state="PROCESSING",
		meta={
			"status": f"{done} of {total} readings processed",
			"done": done,
			"total": total,
			"percentage": int(done * 100 / total) if total else 100,
		}
	)


async def _import_readings_async(
		task_id: str,
		meter_id: UUID,
		rows: List[ParsedRow],
		number_format: str,
		dropped: int,
		update_callback,
) -> Dict[str, Any]:
	total = len(rows)

	async with AsyncSessionLocal() as db:
		task_record = await db.get(TaskResult, task_id)
		if task_record is None:
			task_record = TaskResult(
				id=task_id,
				task_name="import_readings",
				params={"meter_id": str(meter_id), "rows": total, "number_format": number_format},
			)
			db.add(task_record)
		task_record.status = TaskStatus.PROCESSING
		task_record.started_at = datetime.now(timezone.utc)
		await db.commit()

		async def on_progress(done: int):
			if done % PROGRESS_EVERY and done != total:
				return
			update_callback(done, total)
			task_record.progress = {"done": done, "total": total}
			await db.commit()

		try:
			summary = await ReadingService(db).import_rows(
				meter_id,
				rows,
				number_format=number_format,
				on_progress=on_progress,
				dropped=dropped,
			)

			task_record.status = TaskStatus.COMPLETED
			task_record.completed_at = datetime.now(timezone.utc)
			task_record.result = summary.model_dump()
			await db.commit()

			logger.info(f"Import task {task_id}: {summary.message}")
			return {"task_id": task_id, "status": "completed", **summary.model_dump()}

		except Exception as e:
			await db.rollback()
			task_record.status = TaskStatus.FAILED
			task_record.error_message = str(e)
			task_record.completed_at = datetime.now(timezone.utc)
			db.add(task_record)
			await db.commit()
			raise
