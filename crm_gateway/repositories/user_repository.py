from datetime import datetime
from typing import Dict, List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func

from crm_gateway.models.user import User
from crm_gateway.models.api_key import ApiKey
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        return await self.get_by_field("email", email.lower())

    async def list_with_api_key_counts(self, offset: int = 0, limit: int = 100) -> List[Dict]:
        """Users, newest first, each with the number of active API keys they own."""
        key_count = (
            select(func.count(ApiKey.id))
            .where(ApiKey.user_id == User.id, ApiKey.is_active.is_(True))
            .correlate(User)
            .scalar_subquery()
        )
        query = (
            select(User, key_count.label("api_key_count"))
            .order_by(User.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [{**user.public_dict(), "api_key_count": count or 0} for user, count in result.all()]

    async def get_names(self, user_ids: Sequence[str]) -> Dict[str, Dict[str, str]]:
        """Map user id to ``{name, email}`` for the given ids."""
        ids = [user_id for user_id in set(user_ids) if user_id]
        if not ids:
            return {}
        result = await self.session.execute(select(User.id, User.name, User.email).where(User.id.in_(ids)))
        return {row.id: {"name": row.name, "email": row.email} for row in result.all()}

    async def record_failed_login(self, user_id: str, when: datetime) -> None:
        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(failed_login_attempts=User.failed_login_attempts + 1, last_failed_login=when)
        )

    async def reset_failed_logins(self, user_id: str) -> None:
        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(failed_login_attempts=0, last_failed_login=None)
        )
