"""
Health Check Endpoints

Liveness and readiness probes for container orchestration.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response

from ... import __version__

router = APIRouter(tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check.

    Returns 200 if the service is running.
    """
    return {"status": "healthy", "timestamp": _now(), "version": __version__}


@router.get("/health/ready")
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    """
    Readiness probe.

    Checks database connectivity and reports the outbox processor state.
    """
    checks = {}
    all_healthy = True

    try:
        await request.app.state.db.fetchval("SELECT 1")
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)[:100]}"
        all_healthy = False

    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        checks["outbox_processor"] = "disabled"
    else:
        checks["outbox_processor"] = "running" if processor.running else "not running"

    if not all_healthy:
        response.status_code = 503

    return {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks,
        "timestamp": _now()
    }
