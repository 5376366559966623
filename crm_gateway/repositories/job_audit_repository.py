from typing import Any, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update

from crm_gateway.models.job_audit import JobAudit
from .base_repository import BaseRepository


class JobAuditRepository(BaseRepository[JobAudit]):
    """Repository for JobAudit operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(JobAudit, session)

    async def update_status(self, key: str, status: str, **fields: Any) -> bool:
        """Update the audit row for a queued job; False when none was created for ``key``."""
        values: Dict[str, Any] = {"status": status, **fields}
        result = await self.session.execute(
            update(JobAudit).where(JobAudit.idempotency_key == key).values(**values)
        )
        return result.rowcount > 0
