from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from crm_gateway.models.base import new_id, utcnow
from crm_gateway.models.system_setting import SystemSetting
from .base_repository import BaseRepository


class SystemSettingRepository(BaseRepository[SystemSetting]):
    """Repository for SystemSetting operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(SystemSetting, session)

    async def list_all(self) -> List[SystemSetting]:
        result = await self.session.execute(
            select(SystemSetting).order_by(SystemSetting.category, SystemSetting.key)
        )
        return list(result.scalars().all())

    async def get_by_category(self, category: str) -> List[SystemSetting]:
        return await self.get_all(limit=1000, filters={"category": category}, order_by=SystemSetting.key)

    async def get_value(self, category: str, key: str) -> Optional[SystemSetting]:
        result = await self.session.execute(
            select(SystemSetting).where(SystemSetting.category == category, SystemSetting.key == key)
        )
        return result.scalars().first()

    async def upsert(self, category: str, key: str, value: str, value_type: str) -> None:
        """Insert or update the (category, key) row in one statement."""
        now = utcnow()
        statement = insert(SystemSetting).values(
            id=new_id(),
            category=category,
            key=key,
            value=value,
            value_type=value_type,
            created_at=now,
            updated_at=now,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[SystemSetting.category, SystemSetting.key],
            set_={"value": value, "value_type": value_type, "updated_at": now},
        )
        await self.session.execute(statement)
