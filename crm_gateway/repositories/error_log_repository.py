from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete

from crm_gateway.models.error_log import ErrorLog
from .base_repository import BaseRepository


class ErrorLogRepository(BaseRepository[ErrorLog]):
    """Repository for ErrorLog operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(ErrorLog, session)

    async def list_page(
        self,
        conditions: Sequence[Any],
        page: int,
        limit: int,
        sort_by: str = "timestamp",
        descending: bool = True,
    ) -> Tuple[List[ErrorLog], int]:
        column = getattr(ErrorLog, sort_by)
        statement = select(ErrorLog).where(*conditions).order_by(column.desc() if descending else column.asc())
        return await self.paginate(statement, page, limit)

    async def count_where(self, conditions: Sequence[Any] = ()) -> int:
        result = await self.session.execute(select(func.count(ErrorLog.id)).where(*conditions))
        return result.scalar() or 0

    async def average_occurrences(self) -> float:
        result = await self.session.execute(select(func.avg(ErrorLog.occurrences)))
        return float(result.scalar() or 0)

    async def top_values(self, field: str, limit: int = 5) -> List[Tuple[Any, int]]:
        column = getattr(ErrorLog, field)
        count = func.count(ErrorLog.id).label("count")
        result = await self.session.execute(
            select(column, count).group_by(column).order_by(count.desc()).limit(limit)
        )
        return [(row[0], int(row[1])) for row in result.all()]

    async def created_since(self, since: datetime) -> List[ErrorLog]:
        result = await self.session.execute(
            select(ErrorLog).where(ErrorLog.created_at >= since).order_by(ErrorLog.created_at.asc())
        )
        return list(result.scalars().all())

    async def delete_many(self, ids: Sequence[str]) -> List[str]:
        """Delete the rows and return the ids that actually existed."""
        if not ids:
            return []
        result = await self.session.execute(
            delete(ErrorLog).where(ErrorLog.id.in_(list(ids))).returning(ErrorLog.id)
        )
        return [row[0] for row in result.all()]

    async def set_resolved(self, error_id: str, resolved: bool, resolved_by: Optional[str] = None,
                           resolved_at: Optional[datetime] = None) -> Optional[ErrorLog]:
        error = await self.get_by_id(error_id)
        if error is None:
            return None
        error.resolved = resolved
        error.resolved_by = resolved_by
        error.resolved_at = resolved_at
        await self.session.flush()
        return error
