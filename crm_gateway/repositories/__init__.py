from .user_repository import UserRepository
from .api_key_repository import ApiKeyRepository
from .audit_log_repository import AuditLogRepository
from .error_log_repository import ErrorLogRepository
from .token_repository import RefreshTokenRepository, TokenBlacklistRepository
from .system_setting_repository import SystemSettingRepository
from .report_repository import ReportRepository
from .job_audit_repository import JobAuditRepository

__all__ = [
    "UserRepository",
    "ApiKeyRepository",
    "AuditLogRepository",
    "ErrorLogRepository",
    "RefreshTokenRepository",
    "TokenBlacklistRepository",
    "SystemSettingRepository",
    "ReportRepository",
    "JobAuditRepository",
]
