import time

from fastapi import Request
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware

from crm_gateway.core.database import AsyncSessionLocal
from crm_gateway.core.logging import get_logger
from crm_gateway.services.audit_service import AuditService

logger = get_logger(__name__)


class ApiKeyAuditMiddleware(BaseHTTPMiddleware):
    """
    Records an ``api-call`` audit row for every request the API key
    dependency accepted. The write runs after the response has been sent.
    """

    def __init__(self, app, session_factory=None):
        super().__init__(app)
        self.session_factory = session_factory or AsyncSessionLocal

    async def record(self, entry: dict):
        try:
            async with self.session_factory() as session:
                await AuditService(session).log_api_call(**entry)
        except Exception as e:
            logger.error("Failed to log API call", error=str(e))

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        api_key = getattr(request.state, "api_key", None)
        if api_key is None or response.background is not None:
            return response

        started = getattr(request.state, "api_key_started", time.time())
        route = request.scope.get("route")
        entry = {
            "user_id": api_key.user_id,
            "api_key_id": api_key.id,
            "action": "api-call",
            "endpoint": request.url.path,
            "method": request.method,
            "type": getattr(route, "path", request.url.path),
            "request_data": dict(request.query_params) or None,
            "response_data": None,
            "status_code": response.status_code,
            "ip_address": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent"),
            "duration": int((time.time() - started) * 1000),
        }
        response.background = BackgroundTask(self.record, entry)
        return response
