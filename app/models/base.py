import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, func
from sqlalchemy.dialects.postgresql import UUID


def _utcnow():
	return datetime.now(timezone.utc)


class BaseModel:
	"""Shared primary key and audit timestamps"""

	id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
	created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
	updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False)
