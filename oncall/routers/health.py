"""Health check endpoints for container orchestration."""

from typing import Any

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from oncall.database import check_database_connection, get_db_session
from oncall.models.orchestration import OrchestrationInstance, OrchestrationStatus
from oncall.services.scheduler import get_scheduler

router = APIRouter(tags=["Health"])


async def count_orchestrations_by_status() -> dict[str, int]:
    """Number of orchestration instances in each status."""
    async with get_db_session() as db:
        result = await db.execute(
            select(OrchestrationInstance.status, func.count()).group_by(
                OrchestrationInstance.status
            )
        )
        counts = {row_status.value: count for row_status, count in result.all()}
    return {member.value: counts.get(member.value, 0) for member in OrchestrationStatus}


@router.get("/health", response_model=None)
async def health_check() -> Response:
    """
    Health check endpoint with database, scheduler and backlog status.

    Returns:
        200 with "healthy" when the database is reachable,
        503 with "degraded" otherwise.
    """
    db_connected = await check_database_connection()
    scheduler = get_scheduler()
    scheduler_state = "running" if scheduler is not None else "stopped"

    if not db_connected:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "degraded",
                "database": "disconnected",
                "scheduler": scheduler_state,
            },
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "healthy",
            "database": "connected",
            "scheduler": scheduler_state,
            "orchestrations": await count_orchestrations_by_status(),
        },
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """
    Kubernetes liveness probe.

    Succeeds while the process is running; external dependencies are
    not checked.
    """
    return {"status": "alive"}


@router.get("/health/ready", response_model=None)
async def readiness_probe() -> Response:
    """
    Kubernetes readiness probe.

    Ready once the database is reachable, since every endpoint and the
    orchestration runtime depend on it.
    """
    if await check_database_connection():
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": "connected"},
        )

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "database": "disconnected"},
    )
