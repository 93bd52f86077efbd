"""
Health Check Endpoint
Provides health status for Docker health checks and monitoring
"""
from fastapi import APIRouter, Request, status
from typing import Any, Dict

from outreach.utils.time_utils import utc_now

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Health check endpoint for Docker and monitoring systems.

    Returns:
        Dict with status, timestamp and scheduler state
    """
    health: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": "outreach-engine",
    }

    container = getattr(request.app.state, "container", None)
    if container is None:
        health["scheduler"] = "not_initialized"
    else:
        health["scheduler"] = "running" if container.scheduler.running else "stopped"
        health["store"] = type(container.store).__name__

    return health


@router.get("/", status_code=status.HTTP_200_OK)
async def root() -> Dict[str, str]:
    return {
        "message": "Outreach Campaign Engine",
        "version": "1.0.0",
        "docs": "/docs"
    }
