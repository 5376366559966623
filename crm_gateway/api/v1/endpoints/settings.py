from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import get_current_user
from crm_gateway.core.cache import cached, invalidates_cache
from crm_gateway.core.database import get_async_session
from crm_gateway.models.user import User
from crm_gateway.schemas.settings import SettingsPatch
from crm_gateway.services.settings_service import SettingsService

router = APIRouter()


@router.get("")
@cached("settings", "all", ttl=5 * 60)
async def get_settings(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """All settings grouped by category, with typed values."""
    return await SettingsService(session).get_all_settings()


@router.put("")
@invalidates_cache("settings")
async def update_settings(
    patch: SettingsPatch,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """
    Merge ``{category: {key: value}}`` into the stored settings.

    Only ADMIN and SUPER_ADMIN may write; value types are detected from the
    JSON values.
    """
    return await SettingsService(session).update_settings(patch.root, current_user.role)


@router.get("/live")
async def get_live_settings(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await SettingsService(session).get_live_settings()
