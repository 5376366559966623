import json
import math
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from crm_gateway.core.exceptions import ValidationError
from crm_gateway.core.filters import pagination_meta
from crm_gateway.core.queue_policies import CRON_SCHEDULES
from crm_gateway.models.audit_log import AuditLog
from crm_gateway.workers.celery_app import celery_app
from .audit_service import AuditService
from .base_service import BaseService
from .cron_job_state import cron_job_state

CRON_ACTIONS = ("CRON_JOB", "JOB_SCHEDULED")


def next_run(interval_seconds: int, now: Optional[float] = None) -> str:
    """Next wall-clock boundary of the interval, as an ISO timestamp."""
    now = time.time() if now is None else now
    boundary = (math.floor(now / interval_seconds) + 1) * interval_seconds
    return datetime.fromtimestamp(boundary, tz=timezone.utc).isoformat()


def _message(data: Any) -> Optional[str]:
    return json.dumps(data, default=str) if data else None


class CronJobsService(BaseService):
    """Run history, statistics and on/off switches for the scheduled jobs."""

    @staticmethod
    def _check_type(job_type: str):
        if job_type not in CRON_SCHEDULES:
            raise ValidationError(f"Unknown job type: {job_type}")

    async def list_jobs(self, page: int = 1, limit: int = 10, status: Optional[str] = None,
                        type: Optional[str] = None) -> Dict[str, Any]:
        conditions: List[Any] = [AuditLog.action.in_(CRON_ACTIONS)]
        if status == "success":
            conditions.append(AuditLog.status_code == 200)
        elif status == "failed":
            conditions.append(AuditLog.status_code != 200)
        if type:
            conditions.append(AuditLog.type == type)

        logs, total = await self.audit_repo.list_page(conditions, page, limit)
        jobs = []
        for log in logs:
            job_type = log.type or "unknown"
            schedule = CRON_SCHEDULES.get(job_type)
            ok = log.status_code == 200
            jobs.append({
                "id": log.id,
                "name": schedule.name if schedule else "Unknown Job",
                "description": schedule.description if schedule else "",
                "schedule": schedule.expression if schedule else None,
                "next_run": next_run(schedule.interval_seconds) if schedule else None,
                "last_run": log.created_at,
                "status": "active" if ok else "error",
                "is_enabled": cron_job_state.is_enabled(job_type),
                "duration": log.duration,
                "last_status": "success" if ok else "failed",
                "last_status_message": _message(log.response_data),
                "type": job_type,
                "action": log.action,
                "created_at": log.created_at,
            })
        return {"jobs": jobs, "pagination": pagination_meta(page, limit, total)}

    async def get_stats(self) -> Dict[str, Any]:
        base = [AuditLog.action.in_(CRON_ACTIONS)]
        total = await self.audit_repo.count_where(base)
        succeeded = await self.audit_repo.count_where([*base, AuditLog.status_code == 200])
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        return {
            "total": total,
            "active": succeeded,
            "paused": sum(1 for enabled in cron_job_state.all_states().values() if not enabled),
            "error": total - succeeded,
            "total_runs": total,
            "success_rate": round(succeeded / total * 100, 2) if total else 0,
            "average_duration": round(await self.audit_repo.average_duration(base)),
            "last_24_hours": await self.audit_repo.count_where([*base, AuditLog.created_at >= since]),
        }

    async def get_history(self, page: int = 1, limit: int = 10, job_id: Optional[str] = None) -> Dict[str, Any]:
        conditions: List[Any] = [AuditLog.action.in_(CRON_ACTIONS)]
        if job_id:
            conditions.append(AuditLog.id == job_id)

        logs, total = await self.audit_repo.list_page(conditions, page, limit)
        history = [
            {
                "id": log.id,
                "job_id": log.id,
                "status": "success" if log.status_code == 200 else "failed",
                "started_at": log.created_at,
                "completed_at": log.created_at,
                "duration": log.duration,
                "message": _message(log.response_data),
                "error": None if log.status_code == 200 else "Job execution failed",
            }
            for log in logs
        ]
        return {"history": history, "pagination": pagination_meta(page, limit, total)}

    async def run(self, job_type: str) -> Dict[str, Any]:
        """Trigger the scheduler task for ``job_type`` now instead of waiting for beat."""
        self._check_type(job_type)
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            self.logger.info(f"Manually triggering job: {job_type}")
            result = celery_app.send_task(CRON_SCHEDULES[job_type].task_name, kwargs={"manual": True})
            await AuditService(self.session).log_queue_operation(
                "trigger", None, None, "scheduler", job_id=result.id, job_data={"job_type": job_type}
            )
        except Exception as e:
            self.logger.error(f"Failed to run cron job {job_type}", error=str(e))
            return {
                "success": False,
                "message": f"Failed to trigger job: {e}",
                "job_type": job_type,
                "timestamp": timestamp,
            }
        return {
            "success": True,
            "message": f"Cron job {job_type} execution triggered successfully",
            "job_type": job_type,
            "timestamp": timestamp,
        }

    async def toggle(self, job_type: str, enabled: bool) -> Dict[str, Any]:
        self._check_type(job_type)
        timestamp = datetime.now(timezone.utc).isoformat()
        if not await cron_job_state.set_enabled(self.session, job_type, enabled):
            # This process already runs with the new flag; other processes keep the stored one
            return {
                "success": False,
                "message": f"Cron job {job_type} {'enabled' if enabled else 'disabled'} in memory "
                           f"but the setting could not be saved",
                "job_type": job_type,
                "enabled": enabled,
                "timestamp": timestamp,
            }

        self.logger.info(f"Cron job {job_type} {'enabled' if enabled else 'disabled'}")
        return {
            "success": True,
            "message": f"Cron job {job_type} {'enabled' if enabled else 'disabled'}",
            "job_type": job_type,
            "enabled": enabled,
            "timestamp": timestamp,
        }

    async def states(self) -> Dict[str, bool]:
        return cron_job_state.all_states()

    async def state(self, job_type: str) -> Dict[str, Any]:
        return {"job_type": job_type, "enabled": cron_job_state.is_enabled(job_type)}

    async def schedules(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": schedule.name,
                "schedule": schedule.expression,
                "description": schedule.description,
                "type": job_type,
                "next_run": next_run(schedule.interval_seconds),
                "is_enabled": cron_job_state.is_enabled(job_type),
            }
            for job_type, schedule in CRON_SCHEDULES.items()
        ]
