# =====================================
# app/api/v1/tasks.py
# =====================================
from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.database import get_session
from app.schemas.task import TaskResponse
from app.models.task import TaskResult, TaskStatus

router = APIRouter()


@router.get("/", response_model=List[TaskResponse])
async def list_tasks(
		status: Optional[TaskStatus] = None,
		task_name: Optional[str] = None,
		skip: int = Query(0, ge=0),
		limit: int = Query(20, ge=1, le=100),
		db: AsyncSession = Depends(get_session),
):
	"""List background tasks, newest first"""
	query = select(TaskResult)

	if status:
		query = query.where(TaskResult.status == status)
	if task_name:
		query = query.where(TaskResult.task_name == task_name)

	query = query.order_by(TaskResult.created_at.desc())
	query = query.offset(skip).limit(limit)

	result = await db.execute(query)
	return [TaskResponse.model_validate(task) for task in result.scalars().all()]


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task_details(
		task_id: str,
		db: AsyncSession = Depends(get_session),
):
	"""Status, progress and result of a background import"""
	task = await db.get(TaskResult, task_id)
	if not task:
		raise NotFound(f"Task {task_id} not found")
	return TaskResponse.model_validate(task)
