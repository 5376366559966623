from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import get_current_user
from crm_gateway.core.cache import cached, invalidates_cache
from crm_gateway.core.database import get_async_session
from crm_gateway.models.user import User
from crm_gateway.schemas.api_key import ApiKeyCreate, ApiKeyResponse, ApiKeyRevoke, GeneratedApiKey
from crm_gateway.services.api_key_service import ApiKeyService

router = APIRouter()


@router.post("/generate", response_model=GeneratedApiKey, status_code=status.HTTP_201_CREATED)
@invalidates_cache("api-key", "keys", include_user_id=True)
async def generate_api_key(
    body: ApiKeyCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """
    Issue a key for one environment.

    The plain key is only returned here. A user holds at most one key per
    environment; an inactive key in the slot is replaced.
    """
    return await ApiKeyService(session).generate_api_key(
        current_user.id, body.name, body.description, body.permissions, body.environment
    )


@router.get("/keys", response_model=List[ApiKeyResponse])
@cached("api-key", "keys", include_user_id=True, ttl=2 * 60)
async def list_keys(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await ApiKeyService(session).list_keys(current_user.id)


@router.post("/revoke")
@invalidates_cache("api-key", "keys", include_user_id=True)
async def revoke_api_key(
    body: ApiKeyRevoke,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    await ApiKeyService(session).revoke(current_user.id, body.key_id)
    return {"success": True, "message": "API key revoked successfully"}
