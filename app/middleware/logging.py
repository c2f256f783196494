from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request
import logging
import json
import time
from datetime import datetime, timezone

from app.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0


class LoggingMiddleware(BaseHTTPMiddleware):
	"""One JSON line per request"""

	async def dispatch(self, request: Request, call_next):
		start_time = time.time()

		response = await call_next(request)

		duration = time.time() - start_time

		log_dict = {
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"level": "INFO",
			"request_id": getattr(request.state, "request_id", None) or get_request_id(),
			"method": request.method,
			"path": request.url.path,
			"query_params": dict(request.query_params),
			"client_host": request.client.host if request.client else None,
			"user_agent": request.headers.get("user-agent"),
			"content_length": request.headers.get("content-length"),
			"status_code": response.status_code,
			"duration_seconds": round(duration, 3),
		}

		# Domain errors carry their class name (InvalidValue, OracleUnavailable, ...)
		error = getattr(request.state, "error", None)
		if error:
			log_dict["error"] = error

		if response.status_code >= 400:
			log_dict["level"] = "WARNING" if response.status_code < 500 else "ERROR"

		logger.info(json.dumps(log_dict))

		if duration > SLOW_REQUEST_SECONDS:
			logger.warning(f"Slow request detected: {request.method} {request.url.path} took {duration:.2f}s")

		return response
