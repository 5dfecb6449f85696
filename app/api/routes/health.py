"""
Health Check Routes
===================

Endpoints for health monitoring and service status.

Includes:
- Basic health check
- Readiness probe
- Detailed status information
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from app.config import Settings, get_settings
from app.device.adb import AdbBridge
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "",
    summary="Basic health check",
    response_description="Service health status",
)
async def health_check() -> dict[str, str]:
    """
    Basic health check endpoint.

    Returns:
        Simple status message indicating service is running.
    """
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@router.get(
    "/ready",
    summary="Readiness probe",
    response_description="Service readiness status",
)
async def readiness_check(
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Readiness probe.

    Checks that the selected model provider has credentials and reports
    whether an adb executable was found.

    Raises:
        HTTPException: 503 if model credentials are missing.
    """
    checks: dict[str, bool] = {
        "llm_configured": settings.llm.has_credentials(),
        "adb_available": AdbBridge(adb_path=settings.device.adb_path or None).available,
    }

    if not checks["llm_configured"]:
        logger.warning("Model credentials not configured", provider=settings.llm.llm_provider)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "not_ready",
                "checks": checks,
            },
        )

    return {
        "status": "ready",
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get(
    "/live",
    summary="Liveness probe",
    response_description="Service liveness status",
)
async def liveness_check() -> dict[str, str]:
    """Liveness probe; returns quickly while the process is alive."""
    return {"status": "alive"}


@router.get(
    "/info",
    summary="Service information",
    response_description="Detailed service information",
)
async def service_info(
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Get detailed service information.

    Returns:
        Service version, configuration, and environment info.
    """
    from app import __version__

    return {
        "service": "screen-pilot-agent",
        "version": __version__,
        "environment": settings.server.environment,
        "config": {
            "llm_provider": settings.llm.llm_provider,
            "llm_model": settings.llm.get_active_model(),
            "max_rounds": settings.agent.max_rounds,
            "request_interval": settings.agent.request_interval,
            "debug_mode": settings.server.debug,
        },
        "timestamp": datetime.utcnow().isoformat(),
    }
