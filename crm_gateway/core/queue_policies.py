from dataclasses import dataclass
from typing import Dict
from crm_gateway.core.config import settings

SALESFORCE_QUEUE = "salesforce"
EMAIL_QUEUE = "email"
NOTIFICATIONS_QUEUE = "notifications"


@dataclass
class QueuePolicy:
    attempts: int
    backoff_type: str  # fixed|exponential
    backoff_delay_ms: int
    remove_on_complete: int
    remove_on_fail: int
    concurrency: int
    task_name: str

    def backoff_seconds(self, attempts_made: int, backoff_type: str = None, delay_ms: int = None) -> float:
        """Delay before the next attempt once ``attempts_made`` attempts have failed."""
        kind = backoff_type or self.backoff_type
        base = (delay_ms if delay_ms is not None else self.backoff_delay_ms) / 1000.0
        if kind == "exponential":
            return base * (2 ** max(0, attempts_made - 1))
        return base


QUEUE_POLICIES: Dict[str, QueuePolicy] = {
    SALESFORCE_QUEUE: QueuePolicy(
        attempts=2,
        backoff_type="exponential",
        backoff_delay_ms=500,
        remove_on_complete=5000,
        remove_on_fail=2000,
        concurrency=settings.SALESFORCE_CONCURRENCY,
        task_name="crm_gateway.workers.tasks.process_salesforce_job",
    ),
    EMAIL_QUEUE: QueuePolicy(
        attempts=2,
        backoff_type="fixed",
        backoff_delay_ms=5000,
        remove_on_complete=1000,
        remove_on_fail=1000,
        concurrency=settings.EMAIL_CONCURRENCY,
        task_name="crm_gateway.workers.tasks.process_email_job",
    ),
    NOTIFICATIONS_QUEUE: QueuePolicy(
        attempts=5,
        backoff_type="exponential",
        backoff_delay_ms=1000,
        remove_on_complete=1000,
        remove_on_fail=1000,
        concurrency=settings.NOTIFICATION_CONCURRENCY,
        task_name="crm_gateway.workers.tasks.process_notification_job",
    ),
}


@dataclass
class CronSchedule:
    name: str
    description: str
    expression: str
    interval_seconds: int
    task_name: str


CRON_SCHEDULES: Dict[str, CronSchedule] = {
    "pledge": CronSchedule(
        name="Pledge Jobs",
        description="Process pledge-related Salesforce operations",
        expression="*/2 * * * *",
        interval_seconds=120,
        task_name="crm_gateway.workers.scheduler.schedule_pledge_jobs",
    ),
    "oneoff": CronSchedule(
        name="One-off Jobs",
        description="Process one-off Salesforce operations",
        expression="*/2 * * * *",
        interval_seconds=120,
        task_name="crm_gateway.workers.scheduler.schedule_oneoff_jobs",
    ),
    "recurring": CronSchedule(
        name="Recurring Jobs",
        description="Process recurring cleanup jobs",
        expression="*/5 * * * *",
        interval_seconds=300,
        task_name="crm_gateway.workers.scheduler.schedule_recurring_jobs",
    ),
    "hourly": CronSchedule(
        name="Hourly Jobs",
        description="Process hourly reports and maintenance",
        expression="0 * * * *",
        interval_seconds=3600,
        task_name="crm_gateway.workers.scheduler.schedule_hourly_jobs",
    ),
}

TOKEN_CLEANUP_TASK = "crm_gateway.workers.scheduler.cleanup_expired_tokens"
