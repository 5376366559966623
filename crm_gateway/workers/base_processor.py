import time
from typing import Any, Dict, Optional

from crm_gateway.core.logging import get_structured_logger
from crm_gateway.core.queue_policies import QUEUE_POLICIES
from crm_gateway.core.redis_client import redis_client


class BaseProcessor:
    """Base class for queue job processors."""

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        self.policy = QUEUE_POLICIES[queue_name]
        self.logger = get_structured_logger(self.__class__.__name__)
        self.redis = redis_client

    async def process(self, job: Dict[str, Any]) -> Any:
        """
        Process a single job. Override in subclasses.

        Returns:
            The job result stored in the registry.
        """
        raise NotImplementedError("Subclasses must implement process")

    def job_context(self, job: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "queue": self.queue_name,
            "attempt": job.get("attempts_made", 0) + 1,
        }

    def max_attempts(self, job: Dict[str, Any]) -> int:
        return int((job.get("opts") or {}).get("attempts") or self.policy.attempts)

    def should_retry(self, job: Dict[str, Any], error: BaseException) -> bool:
        return job.get("attempts_made", 0) + 1 < self.max_attempts(job)

    def retry_delay(self, job: Dict[str, Any]) -> float:
        backoff = (job.get("opts") or {}).get("backoff") or {}
        return self.policy.backoff_seconds(
            job.get("attempts_made", 0) + 1,
            backoff_type=backoff.get("type"),
            delay_ms=backoff.get("delay"),
        )

    async def handle(self, job: Dict[str, Any]) -> Any:
        """
        Run ``process`` with lifecycle logging and registry bookkeeping.

        Errors before or inside ``process`` are logged as ``job_failed`` and
        propagate. Once ``process`` has succeeded the job is complete: a failure
        to record that in the registry is logged and never triggers a retry.
        """
        job_id = job["id"]
        context = self.job_context(job)
        start_time = time.time()

        self.logger.job_start(job_id, context)
        try:
            await self.redis.move_job(
                self.queue_name, job_id, "active",
                fields={"processed_on": int(start_time * 1000), "attempts_made": job.get("attempts_made", 0)},
            )
            result = await self.process(job)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.logger.job_failed(job_id, e, duration_ms, context)
            raise

        duration_ms = (time.time() - start_time) * 1000
        try:
            await self.redis.move_job(
                self.queue_name, job_id, "completed",
                keep=self.policy.remove_on_complete,
                fields={"finished_on": int(time.time() * 1000), "return_value": result},
            )
        except Exception as e:
            self.logger.error("Failed to record job completion", job_id=job_id, error=str(e), **context)
        self.logger.job_complete(job_id, duration_ms, context)
        return result

    async def mark_retrying(self, job: Dict[str, Any], error: BaseException):
        await self.redis.move_job(
            self.queue_name, job["id"], "waiting",
            fields={"attempts_made": job.get("attempts_made", 0) + 1, "failed_reason": str(error)},
        )

    async def mark_failed(self, job: Dict[str, Any], error: BaseException):
        await self.redis.move_job(
            self.queue_name, job["id"], "failed",
            keep=self.policy.remove_on_fail,
            fields={
                "attempts_made": job.get("attempts_made", 0) + 1,
                "failed_reason": str(error),
                "finished_on": int(time.time() * 1000),
            },
        )


class ProcessorMetrics:
    """Running counters kept per worker process."""

    def __init__(self):
        self.processed = 0
        self.failed = 0
        self.total_processing_time = 0.0

    @property
    def avg_processing_time(self) -> float:
        return self.total_processing_time / self.processed if self.processed else 0.0

    @property
    def success_rate(self) -> float:
        if not self.processed:
            return 0.0
        return round((self.processed - self.failed) / self.processed * 100, 2)

    def record(self, processing_time: float, success: bool):
        self.processed += 1
        if not success:
            self.failed += 1
        self.total_processing_time += processing_time

    def snapshot(self, source: Optional[str] = None) -> Dict[str, Any]:
        data = {
            "processed": self.processed,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "avg_processing_time": round(self.avg_processing_time, 2),
        }
        if source:
            data["source"] = source
        return data
