from abc import ABC
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.logging import get_logger
from crm_gateway.core.redis_client import redis_client
from crm_gateway.repositories import (
    UserRepository,
    ApiKeyRepository,
    AuditLogRepository,
    ErrorLogRepository,
    RefreshTokenRepository,
    TokenBlacklistRepository,
    SystemSettingRepository,
    ReportRepository,
    JobAuditRepository,
)


class BaseService(ABC):
    """Base service class with common functionality."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.logger = get_logger(self.__class__.__name__)

        # Initialize repositories
        self.user_repo = UserRepository(session)
        self.api_key_repo = ApiKeyRepository(session)
        self.audit_repo = AuditLogRepository(session)
        self.error_repo = ErrorLogRepository(session)
        self.refresh_token_repo = RefreshTokenRepository(session)
        self.blacklist_repo = TokenBlacklistRepository(session)
        self.setting_repo = SystemSettingRepository(session)
        self.report_repo = ReportRepository(session)
        self.job_audit_repo = JobAuditRepository(session)

        # Redis client for cache, registry and lock operations
        self.redis = redis_client

    async def commit(self):
        """Commit the current transaction."""
        try:
            await self.session.commit()
        except Exception as e:
            self.logger.error(f"Error committing transaction: {e}")
            await self.session.rollback()
            raise

    async def rollback(self):
        """Rollback the current transaction."""
        try:
            await self.session.rollback()
        except Exception as e:
            self.logger.error(f"Error rolling back transaction: {e}")
            raise
