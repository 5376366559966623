import time
from typing import Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from crm_gateway.core.config import settings
from crm_gateway.core.logging import get_logger
from crm_gateway.core.redis_client import redis_client

logger = get_logger(__name__)

HIGH_VOLUME_PREFIXES = ("/v1/salesforce",)
SKIP_PATHS = ("/health", "/healthz")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window limit per client ip; the CRM proxy routes get a larger, shorter window."""

    def __init__(self, app, redis=None):
        super().__init__(app)
        self.redis = redis or redis_client

    @staticmethod
    def limits_for(path: str) -> Tuple[str, int, int]:
        if path.startswith(HIGH_VOLUME_PREFIXES):
            return "high", settings.HIGH_VOLUME_RATE_LIMIT, settings.HIGH_VOLUME_RATE_WINDOW
        return "default", settings.RATE_LIMIT_MAX, settings.RATE_LIMIT_WINDOW

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(SKIP_PATHS):
            return await call_next(request)

        tier, limit, window = self.limits_for(path)
        client_id = request.client.host if request.client else "unknown"
        key = f"rate_limit:{tier}:{client_id}"

        try:
            count = await self.redis.increment_window(key, window)
        except Exception as e:
            # Redis being down must not take the API with it
            logger.warning("Rate limit check skipped", error=str(e))
            return await call_next(request)

        reset_at = str(int(time.time()) + window)
        if count > limit:
            logger.warning("Rate limit exceeded", client=client_id, tier=tier, path=path)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "Too many requests, please try again later.",
                    "status_code": status.HTTP_429_TOO_MANY_REQUESTS,
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": reset_at,
                    "Retry-After": str(window),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
        response.headers["X-RateLimit-Reset"] = reset_at
        return response
