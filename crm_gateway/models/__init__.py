from .user import User, UserRole, ADMIN_ROLES
from .api_key import ApiKey
from .audit_log import AuditLog
from .error_log import ErrorLog
from .token import RefreshToken, TokenBlacklist
from .system_setting import SystemSetting
from .report import Report
from .job_audit import JobAudit

__all__ = [
    "User",
    "UserRole",
    "ADMIN_ROLES",
    "ApiKey",
    "AuditLog",
    "ErrorLog",
    "RefreshToken",
    "TokenBlacklist",
    "SystemSetting",
    "Report",
    "JobAudit",
]
