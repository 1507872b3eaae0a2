"""
Health Controller Module

This module defines the welcome endpoint and the health/readiness probes.
"""

import time
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ..core.database import Database
from ..lifecycle.dependencies import get_db, get_lifecycle
from ..lifecycle.manager import LifecycleManager

router = APIRouter(tags=["Health"])


@router.get("/", summary="Welcome message")
async def welcome():
    return {"message": "Welcome to the Ludicrous Speed API!"}


@router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    summary="Get application health status"
)
async def health_check(
    lifecycle: LifecycleManager = Depends(get_lifecycle),
    db: Database = Depends(get_db)
):
    """
    Get the overall health status of the application.

    Returns:
        Shutdown state, uptime, in-flight requests and database transport.
    """
    cached = lifecycle.database_cache.current
    return {
        "status": "ok",
        "state": lifecycle.orchestrator.state.value,
        "uptime_seconds": round(time.time() - lifecycle.started_at, 3),
        "active_requests": lifecycle.active_requests,
        "database": {
            "transport": db.transport,
            "initialized_at": cached.initialized_at.isoformat() if cached else None,
        },
    }


@router.get("/live", summary="Liveness probe")
async def liveness_probe():
    return {"status": "alive"}


@router.get("/ready", summary="Readiness probe")
async def readiness_probe(lifecycle: LifecycleManager = Depends(get_lifecycle)):
    """
    Readiness probe.

    Returns:
        200 while accepting work, 503 once draining has begun.
    """
    if lifecycle.accepting_work and lifecycle.database_cache.current is not None:
        return {"status": "ready"}
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready"}
    )
