"""Harmony FastAPI Application Entry Point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from harmony import __version__
from harmony.api import router as api_router
from harmony.core.config import settings
from harmony.core.deps import async_session_factory, get_qr_codec
from harmony.core.logging import configure_logging
from harmony.services.archive_scheduler import ArchiveScheduler

configure_logging(settings.log_level, debug=settings.debug)
logger = structlog.get_logger()

_archive_scheduler: ArchiveScheduler | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    global _archive_scheduler

    # Startup
    logger.info("Starting Harmony application", environment=settings.environment)

    # Build the codec now so a bad key fails startup, not the first scan
    get_qr_codec()

    if settings.archive_scheduler_enabled:
        _archive_scheduler = ArchiveScheduler(
            session_factory=async_session_factory,
            hour=settings.archive_schedule_hour,
            minute=settings.archive_schedule_minute,
            sweep_interval=settings.retention_sweep_interval_seconds,
        )
        await _archive_scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down Harmony application")

    if _archive_scheduler:
        await _archive_scheduler.stop()
        _archive_scheduler = None


app = FastAPI(
    title="Harmony API",
    description="Multi-tenant IoT backend: device scans, rewards and activity archives",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Export-Shape"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    # Convert errors to JSON-serializable format
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "loc": error.get("loc"),
                "msg": str(error.get("msg")),
                "type": error.get("type"),
            }
        )

    logger.error("Validation error", path=str(request.url.path), errors=errors)
    return JSONResponse(status_code=422, content={"detail": errors})


# Set up Prometheus metrics instrumentation
if settings.metrics_enabled:
    from harmony.core.metrics import setup_metrics, expose_metrics

    _instrumentator = setup_metrics(app)
    expose_metrics(app, _instrumentator)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for Kubernetes probes."""
    return {"status": "healthy", "version": __version__}
