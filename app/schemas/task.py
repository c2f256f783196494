# =====================================
# app/schemas/task.py
# =====================================
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from app.models.task import TaskStatus


class TaskResponse(BaseModel):
	task_id: str = Field(validation_alias='id')
	task_name: str
	status: TaskStatus
	created_at: datetime
	started_at: Optional[datetime] = None
	completed_at: Optional[datetime] = None
	progress: Optional[Dict[str, Any]] = None
	result: Optional[Dict[str, Any]] = None
	error_message: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)
