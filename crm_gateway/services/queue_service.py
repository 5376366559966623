import time
import uuid
from typing import Any, Dict, Optional, Union

from crm_gateway.core.exceptions import NotFoundError, ValidationError
from crm_gateway.core.queue_policies import (
    QUEUE_POLICIES,
    SALESFORCE_QUEUE,
    EMAIL_QUEUE,
    NOTIFICATIONS_QUEUE,
)
from crm_gateway.schemas.queue import JobHandle, JobOptions
from crm_gateway.workers.celery_app import celery_app
from .base_service import BaseService

# Celery priorities on the Redis transport run 0..9
MAX_CELERY_PRIORITY = 9


class QueueService(BaseService):
    """Publishes outbound jobs to Celery and records them in the Redis job registry."""

    async def enqueue(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        options: Optional[Union[JobOptions, Dict[str, Any]]] = None,
        name: Optional[str] = None,
    ) -> JobHandle:
        policy = QUEUE_POLICIES.get(queue_name)
        if policy is None:
            raise ValueError(f"Unknown queue: {queue_name}")

        if options is None:
            options = JobOptions()
        elif isinstance(options, dict):
            options = JobOptions(**options)

        job_id = options.job_id or str(uuid.uuid4())
        opts = {
            "priority": options.priority,
            "delay": options.delay,
            "attempts": options.attempts or policy.attempts,
            "backoff": (
                options.backoff.model_dump()
                if options.backoff
                else {"type": policy.backoff_type, "delay": policy.backoff_delay_ms}
            ),
        }
        job = {
            "id": job_id,
            "name": name or f"{queue_name}-job",
            "queue": queue_name,
            "data": payload,
            "opts": opts,
            "timestamp": int(time.time() * 1000),
            "attempts_made": 0,
        }

        await self.redis.register_job(queue_name, job)
        try:
            self._publish(queue_name, job, priority=options.priority, delay=options.delay)
        except Exception as e:
            self.logger.error(f"Error enqueuing {queue_name} job: {e}", job_id=job_id)
            # A job that never reached the broker must not sit in "waiting"
            await self._discard_registration(queue_name, job_id)
            raise

        self.logger.info(f"Added {queue_name} job {job_id}", queue=queue_name, job_id=job_id, priority=options.priority)
        return JobHandle(**{k: job[k] for k in ("id", "queue", "name", "data", "opts", "timestamp")})

    async def add_salesforce_job(self, payload: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> JobHandle:
        return await self.enqueue(SALESFORCE_QUEUE, payload, options, name="salesforce-api-call")

    async def add_email_job(self, payload: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> JobHandle:
        return await self.enqueue(EMAIL_QUEUE, payload, options, name="send-email")

    async def add_notification_job(self, payload: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> JobHandle:
        return await self.enqueue(NOTIFICATIONS_QUEUE, payload, options, name="send-notification")

    async def get_job(self, queue_name: str, job_id: str) -> Optional[Dict[str, Any]]:
        self._require_queue(queue_name)
        return await self.redis.get_job(queue_name, job_id)

    async def find_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Look a job up across every queue."""
        for queue_name in QUEUE_POLICIES:
            job = await self.redis.get_job(queue_name, job_id)
            if job:
                return job
        return None

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    @staticmethod
    def _require_queue(queue_name: str):
        if queue_name not in QUEUE_POLICIES:
            raise ValueError(f"Unknown queue: {queue_name}")

    async def _discard_registration(self, queue_name: str, job_id: str):
        try:
            await self.redis.remove_job(queue_name, job_id)
        except Exception as e:
            self.logger.error(f"Failed to discard unpublished job {job_id}: {e}", queue=queue_name)

    def _publish(self, queue_name: str, job: Dict[str, Any], priority: int = 0, delay: int = 0):
        celery_app.send_task(
            QUEUE_POLICIES[queue_name].task_name,
            args=[job],
            task_id=job["id"],
            queue=queue_name,
            priority=max(0, min(priority, MAX_CELERY_PRIORITY)),
            countdown=delay / 1000.0 if delay else None,
        )

    async def retry_job(self, job_id: str) -> Dict[str, Any]:
        """Publish a failed job again with a fresh attempt budget."""
        job = await self.find_job(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        if job.get("state") != "failed":
            raise ValidationError(f"Job {job_id} is {job.get('state')}, only failed jobs can be retried")

        queue_name = job["queue"]
        await self.redis.move_job(
            queue_name, job_id, "waiting",
            fields={"attempts_made": 0, "failed_reason": None, "finished_on": None},
        )
        retried = {k: job.get(k) for k in ("id", "name", "queue", "data", "opts", "timestamp")}
        retried["attempts_made"] = 0
        self._publish(queue_name, retried, priority=(job.get("opts") or {}).get("priority", 0))

        self.logger.info(f"Retried {queue_name} job {job_id}", queue=queue_name, job_id=job_id)
        return {
            "message": f"Job {job_id} retried successfully",
            "job": {"id": job_id, "queue": queue_name, "status": "waiting"},
        }

    async def remove_job(self, job_id: str) -> Dict[str, Any]:
        job = await self.find_job(job_id)
        if job is None:
            raise NotFoundError("Job not found")

        celery_app.control.revoke(job_id)
        await self.redis.remove_job(job["queue"], job_id)
        self.logger.info(f"Removed {job['queue']} job {job_id}", queue=job["queue"], job_id=job_id)
        return {"message": f"Job {job_id} removed successfully"}

    async def pause_queue(self, queue_name: str) -> Dict[str, Any]:
        """Workers stop consuming ``queue_name``; publishing keeps working."""
        self._require_queue(queue_name)
        celery_app.control.cancel_consumer(queue_name)
        await self.redis.set_queue_paused(queue_name, True)
        self.logger.info(f"Paused queue {queue_name}", queue=queue_name)
        return {"message": f"Queue {queue_name} paused successfully"}

    async def resume_queue(self, queue_name: str) -> Dict[str, Any]:
        self._require_queue(queue_name)
        celery_app.control.add_consumer(queue_name)
        await self.redis.set_queue_paused(queue_name, False)
        self.logger.info(f"Resumed queue {queue_name}", queue=queue_name)
        return {"message": f"Queue {queue_name} resumed successfully"}

    async def clear_queue(self, queue_name: str) -> Dict[str, Any]:
        """Revoke every job of ``queue_name`` and drop it from the registry."""
        self._require_queue(queue_name)
        job_ids = await self.redis.clear_queue(queue_name)
        if job_ids:
            celery_app.control.revoke(job_ids)
        self.logger.info(f"Cleared queue {queue_name}", queue=queue_name, cleared=len(job_ids))
        return {"message": f"Queue {queue_name} cleared successfully", "cleared": len(job_ids)}
