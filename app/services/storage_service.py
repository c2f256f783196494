import mimetypes
import os
import uuid
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
from uuid import UUID

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from app.config import settings
from app.core.errors import InvalidValue, PersistenceFailure

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".heif", ".pdf"}


class StorageService:
    """Evidence photos of OCR readings on S3-compatible storage"""

    def __init__(self):
        self.s3_client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region_name=settings.S3_REGION,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
        )
        self.bucket_name = settings.S3_BUCKET_NAME

    def _public_url(self, key: str) -> str:
        if settings.S3_ENDPOINT_URL:
            return f"{settings.S3_ENDPOINT_URL}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.{settings.S3_REGION}.amazonaws.com/{key}"

    def _put_evidence(self, content: bytes, filename: str, content_type: Optional[str], meter_id: Optional[UUID]) -> str:
        file_extension = os.path.splitext(filename or "")[1].lower() or ".jpg"
        if file_extension not in ALLOWED_EXTENSIONS:
            raise InvalidValue(filename, f"File extension not allowed: {file_extension}")
        if len(content) > settings.MAX_UPLOAD_SIZE:
            raise InvalidValue(filename, f"File too large: {len(content)} bytes (max: {settings.MAX_UPLOAD_SIZE})")

        now = datetime.now(timezone.utc)
        key = f"readings/{meter_id or 'unassigned'}/{now.strftime('%Y/%m/%d')}/{uuid.uuid4()}{file_extension}"
        content_type = content_type or mimetypes.guess_type(filename or "")[0] or "image/jpeg"

        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type,
                Metadata={
                    "original-filename": filename or "",
                    "upload-timestamp": now.isoformat(),
                },
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed: {e}")
            raise PersistenceFailure(f"Evidence upload failed: {e}") from e

        logger.info(f"Evidence stored: {key}")
        return self._public_url(key)

    async def upload_evidence(self, content: bytes, filename: str, content_type: Optional[str] = None, meter_id: Optional[UUID] = None) -> str:
        """Store the photo a reading was taken from and return its URL"""
        return await run_in_threadpool(self._put_evidence, content, filename, content_type, meter_id)

    def _head_bucket(self) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 health check failed: {e}")
            return False

    async def check_connection(self) -> bool:
        return await run_in_threadpool(self._head_bucket)


@lru_cache()
def get_storage_service() -> StorageService:
    return StorageService()
