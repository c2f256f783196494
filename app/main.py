import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.config import settings
from app.api.v1 import buildings, imports, meters, ocr, readings, tasks
from app.core.errors import MeterLedgerError
from app.core.redis import close_redis
from app.database import close_db, init_db
from app.middleware.logging import LoggingMiddleware
from app.middleware.monitoring import MonitoringMiddleware
from app.middleware.request_id import RequestIDMiddleware, RequestIDLogFilter
from app.monitoring import metrics
from app.services.health_service import get_detailed_health

# Configure logging
handler = logging.StreamHandler(sys.stdout)
handler.addFilter(RequestIDLogFilter())
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s',
    handlers=[handler],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    await close_redis()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    **MeterLedger API** - Utility meter readings for landlords

    ## Features
		* Buildings, units and meters (electricity, gas, water, heating)
		* Readings from manual entry, photo OCR and spreadsheet import
		* Meter exchange detection and replacement chains
		* Consumption per reading, across meter exchanges
		* Background imports with Celery

    ## Documentation
		* [Interactive API Docs](/docs)
		* [Health Check](/health)
    """,
    version=settings.APP_VERSION,
    openapi_tags=[
        {"name": "buildings", "description": "Buildings and units"},
        {"name": "meters", "description": "Meter management and replacement chains"},
        {"name": "readings", "description": "Reading operations"},
        {"name": "ocr", "description": "Photo and document extraction"},
        {"name": "imports", "description": "Spreadsheet import wizard"},
        {"name": "tasks", "description": "Background task status"},
        {"name": "monitoring", "description": "System monitoring"},
    ],
    docs_url="/docs",
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else "/api/openapi.json",
    lifespan=lifespan,
)


# =====================================
# Domain errors
# =====================================
@app.exception_handler(MeterLedgerError)
async def meter_ledger_error_handler(request: Request, exc: MeterLedgerError):
    request.state.error = type(exc).__name__
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# =====================================
# Process Time Middleware
# =====================================
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    """Add request processing time to response headers"""
    import time

    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    response.headers["X-Process-Time"] = f"{process_time:.3f}s"

    return response


# =====================================
# Configure Middleware Stack
# =====================================

# GZIP Compression (minimum 1KB)
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Trusted Host validation (production only)
if not settings.DEBUG:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS
    )

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
    max_age=3600,
)

# Custom middleware
app.add_middleware(MonitoringMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

# Include routers
app.include_router(buildings.router, prefix=f"{settings.API_V1_PREFIX}/buildings", tags=["buildings"])
app.include_router(meters.router, prefix=f"{settings.API_V1_PREFIX}/meters", tags=["meters"])
app.include_router(readings.router, prefix=settings.API_V1_PREFIX, tags=["readings"])
app.include_router(ocr.router, prefix=f"{settings.API_V1_PREFIX}/ocr", tags=["ocr"])
app.include_router(imports.router, prefix=f"{settings.API_V1_PREFIX}/imports", tags=["imports"])
app.include_router(tasks.router, prefix=f"{settings.API_V1_PREFIX}/tasks", tags=["tasks"])

# Monitoring endpoints (internal use)
if settings.EXPOSE_METRICS:
    app.include_router(
        metrics.router,
        prefix="/internal",
        tags=["monitoring"]
    )


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
    }


@app.get("/health/detailed", tags=["monitoring"])
async def detailed_health_check():
    return await get_detailed_health()
