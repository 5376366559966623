from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.logging import get_logger
from crm_gateway.repositories import SystemSettingRepository
from crm_gateway.schemas.cron import CRON_JOB_TYPES

CRON_JOBS_CATEGORY = "cronJobs"

logger = get_logger(__name__)


class CronJobState:
    """
    Process-local enabled/disabled flags for the scheduled job types.

    The settings table is the source of truth: ``load`` re-reads it and
    ``set_enabled`` writes through to it after updating memory, so a
    failed write still leaves this process with the requested state.
    """

    def __init__(self):
        self._states: Dict[str, bool] = {}

    async def load(self, session: AsyncSession) -> Dict[str, bool]:
        repo = SystemSettingRepository(session)
        try:
            rows = await repo.get_by_category(CRON_JOBS_CATEGORY)
            if not rows:
                await self._create_defaults(session, repo)
                return self.all_states()

            self._states = {
                row.key: (row.value == "true" if row.value_type == "boolean" else True)
                for row in rows
            }
            logger.info(f"Loaded {len(rows)} cron job states from database")
        except Exception as e:
            logger.error("Failed to load cron job states from database", error=str(e))
            self.use_defaults()
        return self.all_states()

    async def _create_defaults(self, session: AsyncSession, repo: SystemSettingRepository):
        for job_type in CRON_JOB_TYPES:
            self._states[job_type] = True
            try:
                await repo.upsert(CRON_JOBS_CATEGORY, job_type, "true", "boolean")
            except Exception as e:
                logger.error(f"Failed to create default setting for {job_type}", error=str(e))
        await session.commit()
        logger.info("Initialized default cron job settings in database")

    def use_defaults(self):
        self._states = {job_type: True for job_type in CRON_JOB_TYPES}
        logger.warning("Using in-memory fallback states (database unavailable)")

    def is_enabled(self, job_type: str) -> bool:
        return self._states.get(job_type, True)

    async def set_enabled(self, session: AsyncSession, job_type: str, enabled: bool) -> bool:
        """Apply the flag in memory, then persist it; returns whether the write succeeded."""
        self._states[job_type] = enabled
        try:
            await SystemSettingRepository(session).upsert(
                CRON_JOBS_CATEGORY, job_type, "true" if enabled else "false", "boolean"
            )
            await session.commit()
        except Exception as e:
            logger.error(f"Failed to persist state for {job_type}", error=str(e))
            return False
        return True

    def all_states(self) -> Dict[str, bool]:
        return dict(self._states)


cron_job_state = CronJobState()
