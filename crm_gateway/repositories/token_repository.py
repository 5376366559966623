from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete

from crm_gateway.models.token import RefreshToken, TokenBlacklist
from .base_repository import BaseRepository


class RefreshTokenRepository(BaseRepository[RefreshToken]):
    """Repository for RefreshToken operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(RefreshToken, session)

    async def get_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        return await self.get_by_field("token_hash", token_hash)

    async def revoke_if_active(self, token_hash: str, when: datetime) -> bool:
        """
        Conditional revoke used for single-use exchange.

        Returns True only for the caller whose UPDATE flipped ``is_revoked``;
        concurrent exchanges of the same token see zero affected rows.
        """
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == token_hash, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=when)
        )
        return result.rowcount > 0

    async def revoke_all_for_user(self, user_id: str, when: datetime) -> int:
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=when)
        )
        return result.rowcount

    async def list_active_for_user(self, user_id: str, now: datetime) -> List[RefreshToken]:
        result = await self.session.execute(
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(delete(RefreshToken).where(RefreshToken.expires_at < now))
        return result.rowcount


class TokenBlacklistRepository(BaseRepository[TokenBlacklist]):
    """Repository for TokenBlacklist operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(TokenBlacklist, session)

    async def get_by_hash(self, token_hash: str) -> Optional[TokenBlacklist]:
        return await self.get_by_field("token_hash", token_hash)

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(delete(TokenBlacklist).where(TokenBlacklist.expires_at < now))
        return result.rowcount
