# app/main.py
from __future__ import annotations

# Load .env early so os.getenv works everywhere
from dotenv import load_dotenv
load_dotenv()

import secrets
import time

import sqlalchemy as sa
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
# Initialize structured logging and monitoring
from app.core.logging import LoggingMiddleware, get_logger, setup_logging
from app.core.errors import ErrorSeverity, SchedulingError, error_aggregator, log_error
from app.core.metrics import FanOutEventSink, InMemoryEventSink, LoggingEventSink
from app.db.session import get_session

# Routers
from app.api.routes.appointments import router as appointments_router
from app.api.routes.availability import router as availability_router

setup_logging(debug=settings.is_development, max_log_length=settings.MAX_LOG_LENGTH, level=settings.LOG_LEVEL)
logger = get_logger(__name__)

app = FastAPI(title="Scheduling Engine", description="Multi-tenant availability and appointment assignment")

# One sink per app instance; /metrics reads the in-memory half
request_metrics = InMemoryEventSink(max_samples=settings.METRICS_RETENTION_SAMPLES)
app.state.request_metrics = request_metrics
app.state.event_sink = FanOutEventSink(request_metrics, LoggingEventSink())

# -------- Error mapping --------
@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    logger.info("scheduling_error", code=exc.code, path=request.url.path, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    fingerprint = log_error(exc, {"endpoint": request.url.path, "operation": request.method}, ErrorSeverity.HIGH)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal server error", "details": {"ref": fingerprint}}},
    )


# -------- Health / readiness (public) --------
@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"ok": True}


@app.get("/readyz", include_in_schema=False)
async def readyz(db: AsyncSession = Depends(get_session)):
    await db.execute(sa.text("SELECT 1"))
    return {"db": "ok"}


@app.get("/metrics", include_in_schema=False)
async def metrics(request: Request):
    """Internal metrics endpoint for monitoring."""
    return {
        "status": "healthy",
        "requests": request.app.state.request_metrics.summary(),
        "errors": error_aggregator.get_error_summary(),
        "timestamp": time.time(),
    }


# -------- Global security gate (single place) --------
PUBLIC_EXACT = {"/healthz", "/readyz", "/metrics", "/docs", "/openapi.json"}


def _is_public(path: str) -> bool:
    return path in PUBLIC_EXACT


@app.middleware("http")
async def lock_all(request: Request, call_next):
    # No key configured -> gate disabled (local dev, tests)
    if settings.API_KEY and not _is_public(request.url.path):
        provided = request.headers.get("X-API-Key", "")
        if not secrets.compare_digest(provided, settings.API_KEY):
            logger.warning("api_key_rejected", path=request.url.path)
            return JSONResponse(
                status_code=401,
                content={"error": {"code": "unauthorized", "message": "Missing or invalid API key", "details": {}}},
            )
    return await call_next(request)


# Registered last so it wraps the gate and sees every response
app.middleware("http")(
    LoggingMiddleware(
        app.state.event_sink,
        log_requests=settings.LOG_REQUESTS,
        log_responses=settings.LOG_RESPONSES,
        slow_threshold=settings.SLOW_REQUEST_THRESHOLD,
    )
)

app.include_router(appointments_router)
app.include_router(availability_router)
