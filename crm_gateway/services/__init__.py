from .api_key_service import ApiKeyService
from .audit_service import AuditService
from .auth_service import AuthService
from .cron_job_state import CronJobState, cron_job_state
from .cron_jobs_service import CronJobsService
from .errors_service import ErrorsService
from .queue_monitor import QueueMonitor
from .queue_service import QueueService
from .report_service import ReportService
from .salesforce_service import SalesforceService
from .settings_service import SettingsService
from .token_service import TokenService
from .user_service import UserService

__all__ = [
    "ApiKeyService",
    "AuditService",
    "AuthService",
    "CronJobState",
    "cron_job_state",
    "CronJobsService",
    "ErrorsService",
    "QueueMonitor",
    "QueueService",
    "ReportService",
    "SalesforceService",
    "SettingsService",
    "TokenService",
    "UserService",
]
