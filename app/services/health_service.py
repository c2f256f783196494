# app/services/health_service.py
from typing import Dict, Any
from datetime import datetime, timezone
import platform
from app.config import settings
from app.database import check_db_connection
from app.core.redis import check_redis_connection
import logging

logger = logging.getLogger(__name__)


async def get_detailed_health() -> Dict[str, Any]:
    """Database and Redis status; the API is degraded when either is down"""
    health_status = {
        "services": {},
        "system": {
            "python_version": platform.python_version(),
            "environment": settings.ENVIRONMENT,
            "version": settings.APP_VERSION,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    db_healthy = await check_db_connection()
    health_status["services"]["database"] = {
        "healthy": db_healthy,
        "status": "connected" if db_healthy else "disconnected",
    }

    redis_healthy = await check_redis_connection()
    health_status["services"]["redis"] = {
        "healthy": redis_healthy,
        "status": "connected" if redis_healthy else "disconnected",
    }

    all_services_healthy = all(s["healthy"] for s in health_status["services"].values())
    health_status["overall_health"] = "healthy" if all_services_healthy else "degraded"

    return health_status
