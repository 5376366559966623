import time
from typing import Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from crm_gateway.core.database import AsyncSessionLocal
from crm_gateway.core.logging import get_logger
from crm_gateway.services.settings_service import SettingsService

logger = get_logger(__name__)

# Routes that stay reachable so an admin can switch maintenance off again
ALLOWED_PREFIXES = ("/health", "/healthz", "/auth", "/settings")
CHECK_INTERVAL_SECONDS = 10


class MaintenanceModeMiddleware(BaseHTTPMiddleware):
    """Answers 503 while ``general.maintenanceMode`` is on."""

    def __init__(self, app, session_factory=None):
        super().__init__(app)
        self.session_factory = session_factory or AsyncSessionLocal
        self._cached: Optional[Tuple[float, bool]] = None

    async def is_enabled(self) -> bool:
        now = time.monotonic()
        if self._cached and now - self._cached[0] < CHECK_INTERVAL_SECONDS:
            return self._cached[1]
        try:
            async with self.session_factory() as session:
                enabled = await SettingsService(session).get_setting("general", "maintenanceMode", False) is True
        except Exception as e:
            logger.warning("Maintenance mode check failed", error=str(e))
            enabled = False
        self._cached = (now, enabled)
        return enabled

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(ALLOWED_PREFIXES) or not await self.is_enabled():
            return await call_next(request)

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "success": False,
                "error": "Service is under maintenance. Please try again later.",
                "status_code": status.HTTP_503_SERVICE_UNAVAILABLE,
            },
        )
