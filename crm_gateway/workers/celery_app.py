from celery import Celery
from celery.schedules import crontab

from crm_gateway.core.config import settings
from crm_gateway.core.queue_policies import (
    CRON_SCHEDULES,
    EMAIL_QUEUE,
    NOTIFICATIONS_QUEUE,
    SALESFORCE_QUEUE,
    TOKEN_CLEANUP_TASK,
)

SCHEDULER_QUEUE = "scheduler"

celery_app = Celery(
    "crm_gateway",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "crm_gateway.workers.tasks",
        "crm_gateway.workers.scheduler",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # One worker process family per queue: celery -A ... worker -Q salesforce
    task_routes={
        "crm_gateway.workers.tasks.process_salesforce_job": {"queue": SALESFORCE_QUEUE},
        "crm_gateway.workers.tasks.process_email_job": {"queue": EMAIL_QUEUE},
        "crm_gateway.workers.tasks.process_notification_job": {"queue": NOTIFICATIONS_QUEUE},
        "crm_gateway.workers.scheduler.*": {"queue": SCHEDULER_QUEUE},
    },

    beat_schedule={
        "schedule-pledge-jobs": {
            "task": CRON_SCHEDULES["pledge"].task_name,
            "schedule": crontab(minute="*/2"),
        },
        "schedule-oneoff-jobs": {
            "task": CRON_SCHEDULES["oneoff"].task_name,
            "schedule": crontab(minute="*/2"),
        },
        "schedule-recurring-jobs": {
            "task": CRON_SCHEDULES["recurring"].task_name,
            "schedule": crontab(minute="*/5"),
        },
        "schedule-hourly-jobs": {
            "task": CRON_SCHEDULES["hourly"].task_name,
            "schedule": crontab(minute=0),
        },
        "cleanup-expired-tokens": {
            "task": TOKEN_CLEANUP_TASK,
            "schedule": crontab(minute=0, hour=3),
        },
    },

    task_always_eager=False,
    task_eager_propagates=True,

    worker_prefetch_multiplier=1,
    # Stalled jobs: unacked messages are redelivered when a worker dies
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_transport_options={"queue_order_strategy": "priority"},
)
