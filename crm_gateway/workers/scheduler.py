import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict

from crm_gateway.core.config import settings
from crm_gateway.core.database import worker_session
from crm_gateway.core.logging import get_logger
from crm_gateway.core.redis_client import redis_client
from crm_gateway.core.salesforce_client import ONEOFF_PATH, PLEDGE_PATH, salesforce_client
from crm_gateway.repositories import JobAuditRepository
from crm_gateway.services.audit_service import AuditService
from crm_gateway.services.cron_job_state import cron_job_state
from crm_gateway.services.queue_service import QueueService
from crm_gateway.services.token_service import TokenService
from .celery_app import celery_app

logger = get_logger(__name__)

LOCK_TTL_SECONDS = 5 * 60
CLEANUP_DELAY_MS = 5 * 60 * 1000
SALESFORCE_JOB_ATTEMPTS = 3


def _audit_view(job_data: Dict[str, Any]) -> Dict[str, Any]:
    """Job data as recorded in audit rows; the bearer token is left out."""
    return {k: v for k, v in job_data.items() if k != "token"}


async def _run_scheduled(job_type: str, audit_type: str, endpoint: str, manual: bool,
                         schedule: Callable[[QueueService], Awaitable[Dict[str, Any]]],
                         delivered: bool = False) -> str:
    """
    Shared wrapper for every beat entry: re-read the on/off switch, take the
    overlap lock, schedule, and record the outcome as a ``JOB_SCHEDULED`` row.
    """
    await redis_client.reconnect()
    lock_key = f"lock:scheduler:{job_type}"
    try:
        async with worker_session() as session:
            await cron_job_state.load(session)
        if not manual and not cron_job_state.is_enabled(job_type):
            logger.debug(f"{job_type} jobs are disabled, skipping")
            return "disabled"

        if not await redis_client.set_lock(lock_key, ttl_seconds=LOCK_TTL_SECONDS):
            logger.warning(f"Schedule {job_type} jobs already running, skipping")
            return "locked"

        start_time = time.time()
        try:
            async with worker_session() as session:
                job_data = await schedule(QueueService(session))
                duration = int((time.time() - start_time) * 1000)
                await AuditService(session).log_job_scheduling(
                    None, None, audit_type, endpoint, "cron",
                    {**_audit_view(job_data), "duration": duration}, True,
                    is_delivered=delivered,
                )
            logger.info(f"Scheduled {job_type} jobs successfully in {duration}ms", manual=manual)
            return "scheduled"
        except Exception as e:
            logger.error(f"Failed to schedule {job_type} jobs", error=str(e))
            async with worker_session() as session:
                await AuditService(session).log_job_scheduling(
                    None, None, audit_type, endpoint, "cron",
                    {"endpoint": endpoint}, False, str(e),
                    is_delivered=delivered,
                )
            return "failed"
        finally:
            await redis_client.release_lock(lock_key)
    finally:
        await redis_client.disconnect()


def _salesforce_schedule(job_type: str, endpoint: str, audit_prefix: str):
    async def schedule(queue: QueueService) -> Dict[str, Any]:
        token = await salesforce_client.get_token()
        access_token = (token.get("token_response") or {}).get("access_token")
        if not token["success"] or not access_token:
            raise RuntimeError("Failed to retrieve access token")

        audit_id = f"{audit_prefix}-{int(time.time() * 1000)}"
        job_data = {
            "endpoint": endpoint,
            "payload": None,
            "token": access_token,
            "type": job_type,
            "client_id": settings.SF_CLIENT_ID,
            "audit_id": audit_id,
        }
        await JobAuditRepository(queue.session).create({
            "idempotency_key": audit_id,
            "payload": _audit_view(job_data),
            "status": "queued",
            "attempts": 0,
        })
        await queue.commit()
        await queue.add_salesforce_job(job_data, {"priority": 1, "attempts": SALESFORCE_JOB_ATTEMPTS, "job_id": audit_id})
        return job_data

    return schedule


async def _schedule_cleanup(queue: QueueService) -> Dict[str, Any]:
    job_data = {"type": "cleanup", "timestamp": datetime.now(timezone.utc).isoformat()}
    await queue.add_notification_job(job_data, {"delay": CLEANUP_DELAY_MS})
    return job_data


async def _schedule_hourly_report(queue: QueueService) -> Dict[str, Any]:
    job_data = {"type": "hourly-report", "timestamp": datetime.now(timezone.utc).isoformat()}
    await queue.add_notification_job(job_data, {"priority": 1})
    return job_data


@celery_app.task(name="crm_gateway.workers.scheduler.schedule_pledge_jobs", ignore_result=True)
def schedule_pledge_jobs(manual: bool = False):
    """Queue a pledge sync against the CRM."""
    return asyncio.run(_run_scheduled(
        "pledge", "pledge", PLEDGE_PATH, manual,
        _salesforce_schedule("pledge", PLEDGE_PATH, "pledge"), delivered=True,
    ))


@celery_app.task(name="crm_gateway.workers.scheduler.schedule_oneoff_jobs", ignore_result=True)
def schedule_oneoff_jobs(manual: bool = False):
    """Queue a one-off donation sync against the CRM."""
    return asyncio.run(_run_scheduled(
        "oneoff", "oneoff", ONEOFF_PATH, manual,
        _salesforce_schedule("oneoff", ONEOFF_PATH, "oneOffJob"), delivered=True,
    ))


@celery_app.task(name="crm_gateway.workers.scheduler.schedule_recurring_jobs", ignore_result=True)
def schedule_recurring_jobs(manual: bool = False):
    return asyncio.run(_run_scheduled("recurring", "cleanup", "system", manual, _schedule_cleanup))


@celery_app.task(name="crm_gateway.workers.scheduler.schedule_hourly_jobs", ignore_result=True)
def schedule_hourly_jobs(manual: bool = False):
    return asyncio.run(_run_scheduled("hourly", "hourly-report", "notifications", manual, _schedule_hourly_report))


@celery_app.task(name="crm_gateway.workers.scheduler.cleanup_expired_tokens", ignore_result=True)
def cleanup_expired_tokens():
    """Drop expired refresh tokens and blacklist entries."""
    async def _run():
        async with worker_session() as session:
            return await TokenService(session).cleanup_expired_tokens()

    return asyncio.run(_run())
