from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import get_current_user, require_admin
from crm_gateway.core.cache import cached, invalidates_cache
from crm_gateway.core.database import get_async_session
from crm_gateway.models.user import User, UserRole
from crm_gateway.schemas.user import RoleUpdate, UserResponse, UserUpdate, UserWithApiKeyCreate
from crm_gateway.services.user_service import UserService

router = APIRouter()


@router.get("/profile", response_model=UserResponse)
@cached("user", "profile", include_user_id=True, ttl=5 * 60)
async def get_profile(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await UserService(session).get_profile(current_user.id)


@router.put("/profile", response_model=UserResponse)
@invalidates_cache("user", "profile", include_user_id=True)
async def update_profile(
    body: UserUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Update the caller's name and company."""
    return await UserService(session).update_profile(current_user.id, body.model_dump(exclude_unset=True))


@router.get("/all")
@cached("user", "all", include_query=True, ttl=60)
async def get_all_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    """Every account with its API key count (ADMIN and SUPER_ADMIN)."""
    return await UserService(session).get_all_users(current_user, page, limit)


@router.get("/roles/available")
@cached("user", "roles:available", include_user_id=True, ttl=24 * 60 * 60)
async def get_available_roles(
    request: Request,
    current_user: User = Depends(get_current_user)
):
    """Roles the caller is allowed to assign."""
    return {"roles": UserService.available_roles(current_user)}


@router.post("/create-with-api-key", status_code=status.HTTP_201_CREATED)
@invalidates_cache("user", "all")
async def create_user_with_api_key(
    body: UserWithApiKeyCreate,
    request: Request,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    return await UserService(session).create_user_with_api_key(
        body.email,
        body.name,
        body.password,
        body.company,
        api_key_name=body.api_key_name,
        permissions=body.permissions,
        environment=body.environment,
        role=body.role or UserRole.USER,
    )


@router.get("/{user_id}", response_model=UserResponse)
@cached("user", "byId", include_user_id=True, ttl=2 * 60)
async def get_user(
    user_id: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """A user may read their own record; admins may read any."""
    return await UserService(session).get_user_by_id(user_id, current_user)


@router.post("/{user_id}/role", response_model=UserResponse)
@invalidates_cache("user")
async def update_user_role(
    user_id: str,
    body: RoleUpdate,
    request: Request,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    return await UserService(session).update_user_role(user_id, body.role, current_user)
