import secrets

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from crm_gateway.core.config import settings

PROTECTED_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _forbidden(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"success": False, "error": message, "status_code": status.HTTP_403_FORBIDDEN},
    )


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Double-submit cookie protection.

    Every response carries the ``csrf-token`` cookie (readable by scripts) and
    the same value in ``X-CSRF-Token``; state-changing requests outside the
    exempt prefixes must echo the cookie back in that header.
    """

    def __init__(self, app, exempt_paths=None):
        super().__init__(app)
        self.exempt_paths = list(exempt_paths if exempt_paths is not None else settings.CSRF_EXEMPT_PATHS)

    def is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.exempt_paths)

    async def dispatch(self, request: Request, call_next):
        cookie_token = request.cookies.get(settings.CSRF_COOKIE_NAME)

        if request.method.upper() in PROTECTED_METHODS and not self.is_exempt(request.url.path):
            header_token = request.headers.get(settings.CSRF_HEADER_NAME)
            if not cookie_token or not header_token:
                return _forbidden("CSRF token missing. Please include X-CSRF-Token header.")
            if not secrets.compare_digest(cookie_token, header_token):
                return _forbidden("Invalid CSRF token.")

        response = await call_next(request)

        token = cookie_token or secrets.token_hex(32)
        response.set_cookie(
            settings.CSRF_COOKIE_NAME,
            token,
            max_age=settings.CSRF_COOKIE_MAX_AGE,
            httponly=False,
            secure=settings.ENVIRONMENT == "production",
            samesite="strict",
            path="/",
        )
        response.headers[settings.CSRF_HEADER_NAME] = token
        return response
