import time
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request

from crm_gateway.core.cache import cached
from crm_gateway.core.config import settings
from crm_gateway.core.database import db_manager
from crm_gateway.core.redis_client import redis_client
from crm_gateway.schemas.common import HealthResponse

router = APIRouter()

STARTED_AT = time.time()


@router.get("/health", response_model=HealthResponse)
@cached("health", "check", ttl=settings.HEALTH_CACHE_TTL)
async def health_check(request: Request):
    """Liveness probe."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.time() - STARTED_AT,
        "message": "CRM Gateway is running",
    }


@router.get("/healthz", response_model=HealthResponse)
async def detailed_health_check():
    """Readiness probe covering the database and Redis."""
    checks = {}
    healthy = True

    try:
        await db_manager.ping()
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "error": str(e)}
        healthy = False

    try:
        await redis_client.ping()
        checks["redis"] = {"status": "healthy"}
    except Exception as e:
        checks["redis"] = {"status": "unhealthy", "error": str(e)}
        healthy = False

    result = {
        "status": "ok" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.time() - STARTED_AT,
        "message": f"{settings.APP_NAME} {settings.VERSION} ({settings.ENVIRONMENT})",
        "checks": checks,
    }
    if not healthy:
        raise HTTPException(status_code=503, detail=result)
    return result
