from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, distinct

from crm_gateway.models.audit_log import AuditLog
from .base_repository import BaseRepository


class AuditLogRepository(BaseRepository[AuditLog]):
    """Repository for AuditLog reads, aggregates and the delivered flag."""

    def __init__(self, session: AsyncSession):
        super().__init__(AuditLog, session)

    async def list_page(self, conditions: Sequence[Any], page: int, limit: int) -> Tuple[List[AuditLog], int]:
        statement = select(AuditLog).where(*conditions).order_by(AuditLog.created_at.desc())
        return await self.paginate(statement, page, limit)

    async def find_one(self, conditions: Sequence[Any]) -> Optional[AuditLog]:
        result = await self.session.execute(select(AuditLog).where(*conditions).limit(1))
        return result.scalars().first()

    async def count_where(self, conditions: Sequence[Any] = ()) -> int:
        result = await self.session.execute(select(func.count(AuditLog.id)).where(*conditions))
        return result.scalar() or 0

    async def count_distinct_users(self, conditions: Sequence[Any] = ()) -> int:
        result = await self.session.execute(select(func.count(distinct(AuditLog.user_id))).where(*conditions))
        return result.scalar() or 0

    async def average_duration(self, conditions: Sequence[Any] = ()) -> float:
        result = await self.session.execute(select(func.avg(AuditLog.duration)).where(*conditions))
        return float(result.scalar() or 0)

    async def group_counts(
        self,
        field: str,
        conditions: Sequence[Any] = (),
        limit: Optional[int] = None,
        most_common_first: bool = False,
    ) -> List[Tuple[Any, int]]:
        """``(value, count)`` pairs for one column."""
        column = getattr(AuditLog, field)
        count = func.count(AuditLog.id).label("count")
        query = select(column, count).where(*conditions).group_by(column)
        if most_common_first:
            query = query.order_by(count.desc())
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [(row[0], int(row[1])) for row in result.all()]

    async def hourly_counts(self, since: datetime) -> Dict[datetime, Dict[str, int]]:
        """Requests and distinct users per hour bucket since ``since``."""
        bucket = func.date_trunc("hour", AuditLog.created_at).label("bucket")
        query = (
            select(bucket, func.count(AuditLog.id), func.count(distinct(AuditLog.user_id)))
            .where(AuditLog.created_at >= since)
            .group_by(bucket)
        )
        result = await self.session.execute(query)
        return {row[0]: {"requests": int(row[1]), "users": int(row[2])} for row in result.all()}

    async def user_activity(self, since: datetime, limit: int = 10) -> List[Tuple[Optional[str], int, datetime]]:
        """``(user_id, requests, last_active)`` for the busiest users since ``since``."""
        count = func.count(AuditLog.id).label("count")
        query = (
            select(AuditLog.user_id, count, func.max(AuditLog.created_at))
            .where(AuditLog.created_at >= since)
            .group_by(AuditLog.user_id)
            .order_by(count.desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [(row[0], int(row[1]), row[2]) for row in result.all()]

    async def get_undelivered_cron_jobs(
        self,
        user_id: Optional[str],
        job_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLog]:
        """Scheduled-run result rows not yet handed to the client, oldest first."""
        user_clause = AuditLog.user_id.is_(None) if user_id is None else AuditLog.user_id == user_id
        query = select(AuditLog).where(
            user_clause,
            AuditLog.is_delivered.is_(False),
            AuditLog.action == "CRON_JOB",
            AuditLog.ip_address == "system",
        )
        if job_type:
            query = query.where(AuditLog.type == job_type)
        query = query.order_by(AuditLog.created_at.asc())
        if limit and limit > 0:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_delivered(self, ids: Sequence[str]) -> int:
        """Flip ``is_delivered`` on the given rows that are still undelivered."""
        if not ids:
            return 0
        result = await self.session.execute(
            update(AuditLog)
            .where(AuditLog.id.in_(list(ids)), AuditLog.is_delivered.is_(False))
            .values(is_delivered=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
