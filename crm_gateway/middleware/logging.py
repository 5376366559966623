import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from crm_gateway.core.logging import get_logger

logger = get_logger("crm_gateway.requests")

SLOW_REQUEST_SECONDS = 1.0


class LoggingMiddleware(BaseHTTPMiddleware):
    """One structured line per request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        fields = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int(duration * 1000),
            "client_host": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }
        user = getattr(request.state, "user", None)
        if user is not None:
            fields["user_id"] = user.id

        if response.status_code >= 500:
            logger.error("Request completed", **fields)
        elif response.status_code >= 400:
            logger.warning("Request completed", **fields)
        else:
            logger.info("Request completed", **fields)

        if duration > SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request detected: {request.method} {request.url.path} took {duration:.2f}s")

        return response
