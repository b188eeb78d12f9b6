"""
Health Check Endpoints
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from nanoassist.config import get_settings
from nanoassist.database.connection import check_database_health
from nanoassist.serving.cache import get_redis

settings = get_settings()
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Dependency report.
    
    The database is required; redis and the change feed only degrade
    caching and live updates.
    """
    checks: Dict[str, Any] = {}
    overall_status = "healthy"
    
    db_health = await check_database_health()
    checks["database"] = db_health
    if db_health.get("status") != "healthy":
        overall_status = "unhealthy"
    
    try:
        await get_redis().ping()
        checks["redis"] = {"status": "healthy"}
    except Exception as e:
        checks["redis"] = {"status": "unavailable", "error": str(e)}
        if overall_status == "healthy":
            overall_status = "degraded"
    
    checks["realtime"] = {"status": "enabled" if getattr(request.app.state, "feed", None) else "disabled"}
    
    resolver = getattr(request.app.state, "resolver", None)
    if resolver is not None:
        checks["auth"] = {"state": resolver.state.value, "loading": resolver.loading}
    
    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response) -> Dict[str, str]:
    """503 until the database answers."""
    db_health = await check_database_health()
    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
