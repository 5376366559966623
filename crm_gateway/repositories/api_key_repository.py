from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from crm_gateway.models.api_key import ApiKey
from .base_repository import BaseRepository


class ApiKeyRepository(BaseRepository[ApiKey]):
    """Repository for ApiKey operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(ApiKey, session)

    async def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        return await self.get_by_field("key_hash", key_hash)

    async def get_for_user_environment(self, user_id: str, environment: str) -> Optional[ApiKey]:
        result = await self.session.execute(
            select(ApiKey).where(ApiKey.user_id == user_id, ApiKey.environment == environment)
        )
        return result.scalars().first()

    async def list_for_user(self, user_id: str) -> List[ApiKey]:
        result = await self.session.execute(
            select(ApiKey).where(ApiKey.user_id == user_id).order_by(ApiKey.created_at.desc())
        )
        return list(result.scalars().all())

    async def touch(self, key_id: str, when: datetime) -> None:
        await self.session.execute(update(ApiKey).where(ApiKey.id == key_id).values(last_used_at=when))

    async def deactivate(self, key_id: str, user_id: str) -> bool:
        """Deactivate a key owned by ``user_id``; False when no such active key exists."""
        result = await self.session.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id, ApiKey.user_id == user_id, ApiKey.is_active.is_(True))
            .values(is_active=False)
        )
        return result.rowcount > 0
