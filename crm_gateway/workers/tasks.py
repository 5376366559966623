import asyncio
from typing import Any, Dict

from celery.signals import task_failure, task_success

from crm_gateway.core.logging import get_structured_logger
from crm_gateway.core.redis_client import redis_client
from .base_processor import BaseProcessor
from .celery_app import celery_app
from .processors import EmailProcessor, NotificationProcessor, SalesforceProcessor

logger = get_structured_logger(__name__)

# Created once per worker process so metrics accumulate across jobs
salesforce_processor = SalesforceProcessor()
email_processor = EmailProcessor()
notification_processor = NotificationProcessor()

QUEUE_TASKS = (
    "crm_gateway.workers.tasks.process_salesforce_job",
    "crm_gateway.workers.tasks.process_email_job",
    "crm_gateway.workers.tasks.process_notification_job",
)


class RetryLater(Exception):
    """Raised inside the event loop; turned into ``task.retry`` outside it."""

    def __init__(self, error: BaseException, countdown: float):
        super().__init__(str(error))
        self.error = error
        self.countdown = countdown


async def _execute(task, processor: BaseProcessor, job: Dict[str, Any]) -> Any:
    """
    Run one attempt of ``job``.

    A failure is retried with the job's own backoff while attempts remain,
    otherwise the job is parked in the ``failed`` registry state and the
    error propagates so Celery records the task as failed.
    """
    # Each task runs in a fresh event loop; pooled connections from the previous loop are unusable
    await redis_client.reconnect()
    job = {**job, "attempts_made": task.request.retries}

    try:
        return await processor.handle(job)
    except Exception as e:
        if processor.should_retry(job, e):
            await processor.mark_retrying(job, e)
            raise RetryLater(e, processor.retry_delay(job)) from e
        await processor.mark_failed(job, e)
        raise
    finally:
        await redis_client.disconnect()


def _run_job(task, processor: BaseProcessor, job: Dict[str, Any]) -> Any:
    try:
        return asyncio.run(_execute(task, processor, job))
    except RetryLater as retry:
        raise task.retry(exc=retry.error, countdown=retry.countdown)


@celery_app.task(name="crm_gateway.workers.tasks.process_salesforce_job", bind=True, max_retries=None)
def process_salesforce_job(self, job: Dict[str, Any]):
    """Execute a scheduled CRM call."""
    return _run_job(self, salesforce_processor, job)


@celery_app.task(name="crm_gateway.workers.tasks.process_email_job", bind=True, max_retries=None)
def process_email_job(self, job: Dict[str, Any]):
    """Deliver an email job."""
    return _run_job(self, email_processor, job)


@celery_app.task(name="crm_gateway.workers.tasks.process_notification_job", bind=True, max_retries=None)
def process_notification_job(self, job: Dict[str, Any]):
    """Deliver a notification job."""
    return _run_job(self, notification_processor, job)


@task_success.connect
def on_task_success(sender=None, result=None, **kwargs):
    if sender is None or sender.name not in QUEUE_TASKS:
        return
    logger.job_complete(sender.request.id or "unknown", 0, {"event": "worker_completed"})


@task_failure.connect
def on_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    if sender is None or sender.name not in QUEUE_TASKS:
        return
    logger.job_failed(task_id or "unknown", exception, 0, {"event": "worker_failed"})
