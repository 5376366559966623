from .common import HealthResponse
from .auth import LoginRequest, RegisterRequest, RefreshRequest, TokenPair, AuthResponse
from .user import UserCreate, UserUpdate, RoleUpdate, UserWithApiKeyCreate, UserResponse
from .api_key import ApiKeyCreate, ApiKeyRevoke, ApiKeyResponse, GeneratedApiKey
from .audit import AuditLogFilters, ExportRequest, MarkDeliveredRequest
from .errors import ErrorLogFilters, ErrorExportRequest, BulkDeleteRequest
from .settings import SettingsPatch
from .queue import BackoffOptions, JobOptions, JobHandle
from .salesforce import SalesforceCall
from .cron import CRON_JOB_TYPES, CronToggle
from .report import ReportResponse

__all__ = [
    # Common
    "HealthResponse",

    # Auth
    "LoginRequest", "RegisterRequest", "RefreshRequest", "TokenPair", "AuthResponse",

    # Users and keys
    "UserCreate", "UserUpdate", "RoleUpdate", "UserWithApiKeyCreate", "UserResponse",
    "ApiKeyCreate", "ApiKeyRevoke", "ApiKeyResponse", "GeneratedApiKey",

    # Audit and errors
    "AuditLogFilters", "ExportRequest", "MarkDeliveredRequest",
    "ErrorLogFilters", "ErrorExportRequest", "BulkDeleteRequest",

    # Settings, queue, CRM, cron, reports
    "SettingsPatch",
    "BackoffOptions", "JobOptions", "JobHandle",
    "SalesforceCall",
    "CRON_JOB_TYPES", "CronToggle",
    "ReportResponse",
]
