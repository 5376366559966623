import time
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.config import settings
from crm_gateway.core.database import get_async_session
from crm_gateway.core.exceptions import ForbiddenError, TokenValidationError, UnauthorizedError
from crm_gateway.core.logging import get_logger
from crm_gateway.core.security import AuthService
from crm_gateway.models.user import User, UserRole
from crm_gateway.repositories import UserRepository
from crm_gateway.services.api_key_service import ApiKeyService
from crm_gateway.services.token_service import TokenService

logger = get_logger(__name__)

# Bearer is optional: the cookie is checked first
security = HTTPBearer(auto_error=False)

API_KEY_ENVIRONMENTS = ("development", "staging", "production")


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def extract_access_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if token:
        return token
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: AsyncSession = Depends(get_async_session),
) -> User:
    """
    Dependency resolving the authenticated console user.

    The blacklist is consulted before the signature so a logged-out token is
    refused even while it is still cryptographically valid.
    """
    token = extract_access_token(request, credentials)
    if not token:
        raise UnauthorizedError("Authentication required")

    if await TokenService(session).is_token_blacklisted(token):
        raise TokenValidationError("Token has been revoked")

    payload = AuthService.verify_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise TokenValidationError("Could not validate credentials")

    user = await UserRepository(session).get_by_id(user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("User not found or inactive")

    request.state.user = user
    request.state.access_token = token
    return user


def require_role(*roles: UserRole):
    """Dependency factory allowing only users whose role is in ``roles``."""

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise ForbiddenError("Insufficient permissions")
        return current_user

    return role_checker


require_admin = require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
require_super_admin = require_role(UserRole.SUPER_ADMIN)


def resolve_environment(request: Request) -> str:
    requested = request.headers.get("X-Environment")
    if requested in API_KEY_ENVIRONMENTS:
        return requested
    return settings.ENVIRONMENT


async def require_api_key(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    """
    Dependency for machine clients sending ``X-API-Key``.

    The resolved owner and key are left on ``request.state`` so the API key
    audit middleware can record the call once the response is ready.
    """
    key = request.headers.get("X-API-Key")
    if not key:
        raise UnauthorizedError("API key required")

    environment = resolve_environment(request)
    context = await ApiKeyService(session).validate_api_key(key, environment)

    request.state.user = context["user"]
    request.state.api_key = context["api_key"]
    request.state.api_key_started = time.time()
    logger.debug("API key accepted", api_key_id=context["api_key"].id, environment=environment)
    return context
