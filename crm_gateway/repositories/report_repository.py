from typing import List
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.models.report import Report
from .base_repository import BaseRepository


class ReportRepository(BaseRepository[Report]):
    """Repository for Report operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Report, session)

    async def list_recent(self) -> List[Report]:
        return await self.get_all(order_by=Report.created_at.desc())
