"""
backend/matchboard/main.py

Purpose:
    FastAPI application bootstrap, middleware/router wiring, event bus and
    scheduler lifecycle, and mapping of the error taxonomy to HTTP responses.

Dependencies:
    - matchboard.database
    - matchboard.services.event_bus
    - matchboard.workers.feed_refresher
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from matchboard.config import settings
from matchboard.database import close_db, connect_db
from matchboard.errors import InputValidationError, ServiceUnavailable
from matchboard.middleware.logging import StructuredLoggingMiddleware, setup_logging
from matchboard.models.match import HealthResponse

logger = logging.getLogger("matchboard")
scheduler = AsyncIOScheduler()


def _register_jobs() -> None:
    from matchboard.workers.feed_refresher import process_refresh_jobs

    scheduler.add_job(
        process_refresh_jobs,
        "interval",
        id="feed_refresher",
        seconds=settings.FEED_REFRESHER_TICK_SECONDS,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()
    from matchboard.providers.api_football import api_football_provider
    from matchboard.providers.odds_feed import odds_feed_provider
    from matchboard.providers.pinnacle import pinnacle_provider
    from matchboard.services.event_bus import event_bus
    from matchboard.services.event_handlers import register_event_handlers
    from matchboard.services.refresh_dispatcher import refresh_dispatcher

    if settings.EVENT_BUS_ENABLED:
        register_event_handlers(event_bus)
        await event_bus.start()
        logger.info("Event bus enabled")
    else:
        logger.info("Event bus disabled via config")

    _register_jobs()
    scheduler.start()
    logger.info("Background scheduler started")

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await refresh_dispatcher.wait_idle()
    if settings.EVENT_BUS_ENABLED:
        await event_bus.drain()
        await event_bus.stop()
    for provider in (pinnacle_provider, odds_feed_provider, api_football_provider):
        await provider.aclose()
    await close_db()


app = FastAPI(
    title="Matchboard",
    description="Live and prematch match feed with aggregated odds",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Timezone", "X-Request-ID"],
    expose_headers=["X-Data-Source", "X-Request-ID"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from matchboard.routers.matches import router as matches_router

app.include_router(matches_router)


@app.exception_handler(InputValidationError)
async def input_validation_handler(request: Request, exc: InputValidationError):
    logger.warning("Invalid input on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ServiceUnavailable)
async def service_unavailable_handler(request: Request, exc: ServiceUnavailable):
    logger.error("Service unavailable: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"success": False, "error": exc.error, "message": exc.message},
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid input."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health snapshot: cache reachability, refresh job failures, data staleness."""
    from matchboard.services.event_bus import event_bus
    from matchboard.services.health_monitor import health_monitor

    status = await health_monitor.check_health()
    bus = event_bus.stats()
    return HealthResponse(
        status=status.system_status,
        healthy=status.healthy,
        degraded=not status.healthy,
        warnings=status.warnings,
        checks={
            **status.checks,
            "degraded_components": status.degraded,
            "event_bus": {
                key: bus[key] for key in ("running", "published_total", "failed_total", "dropped_total")
            },
        },
    )
