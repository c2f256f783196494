# app/services/import_session.py
"""
Import wizard state between the parse, preview and commit steps.

The parsed table is kept in Redis under an opaque token and expires after
REDIS_TTL seconds; nothing is written to the database before commit.
"""
import json
import logging
import secrets
from typing import Dict, List, Optional
from uuid import UUID

import redis.asyncio as redis

from app.config import settings
from app.core.errors import NotFound
from app.core.redis import get_redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "import:"


class ImportSession:
    def __init__(self, token: str, meter_id: UUID, file_name: str, columns: List[str], rows: List[Dict[str, str]]):
        self.token = token
        self.meter_id = meter_id
        self.file_name = file_name
        self.columns = columns
        self.rows = rows

    def to_json(self) -> str:
        return json.dumps({
            "meter_id": str(self.meter_id),
            "file_name": self.file_name,
            "columns": self.columns,
            "rows": self.rows,
        })

    @classmethod
    def from_json(cls, token: str, raw: str) -> "ImportSession":
        data = json.loads(raw)
        return cls(token, UUID(data["meter_id"]), data["file_name"], data["columns"], data["rows"])


class ImportSessionStore:
    def __init__(self, client: redis.Redis, ttl: Optional[int] = None):
        self.client = client
        self.ttl = ttl or settings.REDIS_TTL

    async def create(self, meter_id: UUID, file_name: str, columns: List[str], rows: List[Dict[str, str]]) -> ImportSession:
        session = ImportSession(secrets.token_urlsafe(16), meter_id, file_name, columns, rows)
        await self.client.set(KEY_PREFIX + session.token, session.to_json(), ex=self.ttl)
        logger.info(f"Import session {session.token}: {file_name}, {len(rows)} rows")
        return session

    async def get(self, token: str) -> ImportSession:
        raw = await self.client.get(KEY_PREFIX + token)
        if raw is None:
            raise NotFound(f"Import session {token} not found or expired")
        return ImportSession.from_json(token, raw)

    async def delete(self, token: str):
        await self.client.delete(KEY_PREFIX + token)


async def get_import_sessions() -> ImportSessionStore:
    return ImportSessionStore(await get_redis())
