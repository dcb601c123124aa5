"""On-call escalation service FastAPI application."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from oncall.config import settings
from oncall.database import close_database
from oncall.logging_config import get_logger, setup_logging
from oncall.routers import alerts, health, orchestrations
from oncall.services.escalation_activities import get_runtime
from oncall.services.scheduler import start_scheduler, stop_scheduler

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    # Note: migrations are applied with `alembic upgrade head` before start
    runtime = get_runtime()
    logger.info(
        "On-call escalation service started",
        worker_id=runtime.worker_id,
    )

    # Suspended runs left by a previous process resume on the first tick
    start_scheduler()

    yield

    # Shutdown
    logger.info("Shutting down on-call escalation service...")
    stop_scheduler()
    await runtime.drain()
    await close_database()
    logger.info("On-call escalation service shutdown complete")


app = FastAPI(
    title="On-Call Escalation API",
    description="Durable on-call alert escalation service",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(alerts.router)
app.include_router(orchestrations.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint."""
    return {
        "name": "On-Call Escalation API",
        "version": APP_VERSION,
        "docs": "/docs",
    }
