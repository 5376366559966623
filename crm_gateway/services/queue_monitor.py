import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from crm_gateway.core.exceptions import ValidationError
from crm_gateway.core.exporters import CONTENT_TYPES, humanize_header, rows_from_dicts, to_csv, to_xlsx
from crm_gateway.core.filters import pagination_meta
from crm_gateway.core.logging import get_structured_logger
from crm_gateway.core.queue_policies import QUEUE_POLICIES, SALESFORCE_QUEUE
from crm_gateway.core.redis_client import JOB_STATES, RedisClient, redis_client

CRITICAL_FAILURE_RATIO = 0.5
WARNING_FAILURE_RATIO = 0.2

MAX_JOBS_PER_STATUS = 5000
EXPORT_MAX_JOBS_PER_STATUS = MAX_JOBS_PER_STATUS * 2
PROCESSING_TIME_SAMPLE = 100

QUEUE_DEPTH_ALERT = 5000
ERROR_RATE_ALERT = 0.05
PROCESSING_TIME_ALERT_MS = 10000

EXPORT_FORMATS = ("csv", "json", "xlsx")
EXPORT_KEYS = ("id", "name", "queue", "status", "created_at", "updated_at", "attempts_made", "failed_reason")


def calculate_health(counts: Dict[str, int]) -> str:
    """critical above 50% failed, warning above 20%, otherwise healthy."""
    total = sum(counts.get(state, 0) for state in JOB_STATES)
    if total == 0:
        return "healthy"
    ratio = counts.get("failed", 0) / total
    if ratio > CRITICAL_FAILURE_RATIO:
        return "critical"
    if ratio > WARNING_FAILURE_RATIO:
        return "warning"
    return "healthy"


def calculate_error_rate(counts: Dict[str, int]) -> float:
    """Failed share of finished jobs."""
    finished = counts.get("completed", 0) + counts.get("failed", 0)
    return counts.get("failed", 0) / finished if finished else 0.0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ms_to_iso(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).isoformat()


def _matches(job: Dict[str, Any], needle: str) -> bool:
    return any(
        needle in str(job.get(field) or "").lower()
        for field in ("name", "queue", "state", "failed_reason")
    )


class QueueMonitor:
    """Read-only views over the job registry."""

    def __init__(self, redis: Optional[RedisClient] = None):
        self.redis = redis or redis_client
        self.logger = get_structured_logger(self.__class__.__name__)

    async def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        stats: Dict[str, Dict[str, int]] = {}
        total = {state: 0 for state in JOB_STATES}
        for queue_name in QUEUE_POLICIES:
            counts = await self.redis.get_job_counts(queue_name)
            stats[queue_name] = counts
            for state in JOB_STATES:
                total[state] += counts.get(state, 0)
        stats["total"] = total
        return stats

    async def get_queue_metrics(self) -> Dict[str, Any]:
        stats = await self.get_queue_stats()
        return {"timestamp": _now_iso(), "queues": stats}

    async def get_queue_health(self) -> Dict[str, Any]:
        try:
            queues = {}
            for queue_name in QUEUE_POLICIES:
                counts = await self.redis.get_job_counts(queue_name)
                queues[queue_name] = {**counts, "health": calculate_health(counts)}
            return {"status": "healthy", "queues": queues, "timestamp": _now_iso()}
        except Exception as e:
            self.logger.error("Queue health check failed", error=str(e))
            return {"status": "unhealthy", "error": str(e), "timestamp": _now_iso()}

    async def get_job_counts(self) -> Dict[str, int]:
        """Totals across queues; ``paused`` counts waiting jobs on paused queues."""
        totals = {state: 0 for state in JOB_STATES}
        totals["paused"] = 0
        for queue_name in QUEUE_POLICIES:
            counts = await self.redis.get_job_counts(queue_name)
            for state in JOB_STATES:
                totals[state] += counts.get(state, 0)
            if await self.redis.is_queue_paused(queue_name):
                totals["paused"] += counts.get("waiting", 0)
        return totals

    async def avg_processing_time(self, queue_name: str) -> float:
        """Mean milliseconds from pick-up to completion over the most recent completed jobs."""
        job_ids = await self.redis.get_job_ids(queue_name, "completed", 0, PROCESSING_TIME_SAMPLE - 1)
        durations = [
            job["finished_on"] - job["processed_on"]
            for job in await self.redis.get_jobs(queue_name, job_ids)
            if job.get("finished_on") and job.get("processed_on")
        ]
        return round(sum(durations) / len(durations), 2) if durations else 0.0

    async def get_detailed_stats(self) -> Dict[str, Any]:
        queues: Dict[str, Dict[str, Any]] = {}
        totals = {state: 0 for state in JOB_STATES}
        for queue_name in QUEUE_POLICIES:
            counts = await self.redis.get_job_counts(queue_name)
            queues[queue_name] = {**counts, "paused": await self.redis.is_queue_paused(queue_name)}
            for state in JOB_STATES:
                totals[state] += counts.get(state, 0)
        queues[SALESFORCE_QUEUE]["avg_processing_time"] = await self.avg_processing_time(SALESFORCE_QUEUE)

        performance = {
            "queue_depth": totals["waiting"],
            "error_rate": round(calculate_error_rate(totals), 4),
            "avg_processing_time": queues[SALESFORCE_QUEUE]["avg_processing_time"],
            "timestamp": _now_iso(),
        }
        return {"queues": queues, "performance": performance, "alerts": self.active_alerts(performance)}

    def active_alerts(self, performance: Dict[str, Any]) -> List[Dict[str, Any]]:
        alerts = []
        if performance["queue_depth"] > QUEUE_DEPTH_ALERT:
            alerts.append({
                "type": "HIGH_QUEUE_DEPTH",
                "severity": "warning",
                "message": f"{performance['queue_depth']} jobs waiting",
            })
        if performance["error_rate"] > ERROR_RATE_ALERT:
            alerts.append({
                "type": "HIGH_ERROR_RATE",
                "severity": "critical",
                "message": f"{performance['error_rate'] * 100:.2f}% error rate",
            })
        if performance["avg_processing_time"] > PROCESSING_TIME_ALERT_MS:
            alerts.append({
                "type": "SLOW_PROCESSING",
                "severity": "warning",
                "message": f"Avg processing time: {performance['avg_processing_time']:.2f}ms",
            })
        for alert in alerts:
            self.logger.alert(alert["message"], severity=alert["severity"], alert_type=alert["type"])
        return alerts

    async def get_alerts(self) -> Dict[str, Any]:
        stats = await self.get_detailed_stats()
        return {"alerts": stats["alerts"], "timestamp": _now_iso()}

    async def _collect_jobs(self, queue_names: List[str], states: List[str], per_state: int) -> List[Dict[str, Any]]:
        jobs: List[Dict[str, Any]] = []
        for name in queue_names:
            for state in states:
                job_ids = await self.redis.get_job_ids(name, state, 0, per_state - 1)
                jobs.extend(await self.redis.get_jobs(name, job_ids))
        return jobs

    @staticmethod
    def _scope(queue_name: Optional[str], status: Optional[str]) -> Tuple[List[str], List[str]]:
        queue_names = [queue_name] if queue_name else list(QUEUE_POLICIES)
        for name in queue_names:
            if name not in QUEUE_POLICIES:
                raise ValueError(f"Unknown queue: {name}")
        states = [status] if status in JOB_STATES else list(JOB_STATES)
        return queue_names, states

    async def list_jobs(
        self,
        queue_name: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """Jobs newest first, optionally narrowed by queue, state and a text search."""
        queue_names, states = self._scope(queue_name, status)
        offset = (page - 1) * limit
        needle = search.strip().lower() if search and search.strip() else None

        # One queue and one state: the state set already orders the page
        if len(queue_names) == 1 and len(states) == 1 and needle is None:
            total = (await self.redis.get_job_counts(queue_names[0])).get(states[0], 0)
            job_ids = await self.redis.get_job_ids(queue_names[0], states[0], offset, offset + limit - 1)
            jobs = await self.redis.get_jobs(queue_names[0], job_ids)
            return {"data": jobs, "pagination": pagination_meta(page, limit, total)}

        jobs = await self._collect_jobs(queue_names, states, MAX_JOBS_PER_STATUS)
        if needle:
            jobs = [job for job in jobs if _matches(job, needle)]

        jobs.sort(key=lambda job: job.get("timestamp") or 0, reverse=True)
        return {"data": jobs[offset:offset + limit], "pagination": pagination_meta(page, limit, len(jobs))}

    async def export_jobs(self, filters: Dict[str, Any], format: str = "csv") -> Tuple[Any, str, str]:
        """Return ``(content, content_type, filename)`` for the jobs matching ``filters``."""
        if format not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {format}")
        try:
            queue_names, states = self._scope(filters.get("queue"), filters.get("status"))
        except ValueError as e:
            raise ValidationError(str(e))

        jobs = await self._collect_jobs(queue_names, states, EXPORT_MAX_JOBS_PER_STATUS)
        search = filters.get("search")
        if search and str(search).strip():
            jobs = [job for job in jobs if _matches(job, str(search).strip().lower())]

        records = [
            {
                "id": job.get("id"),
                "name": job.get("name") or f"{job.get('queue')} Job",
                "queue": job.get("queue"),
                "status": job.get("state"),
                "created_at": _ms_to_iso(job.get("timestamp")),
                "updated_at": _ms_to_iso(job.get("processed_on") or job.get("timestamp")),
                "attempts_made": job.get("attempts_made") or 0,
                "failed_reason": job.get("failed_reason") or "",
            }
            for job in jobs
        ]
        filename = f"jobs-{datetime.now(timezone.utc).date().isoformat()}.{format}"

        if format == "json":
            return json.dumps(records, indent=2, default=str), CONTENT_TYPES["json"], filename

        headers = [humanize_header(key) for key in EXPORT_KEYS]
        rows = rows_from_dicts(records, EXPORT_KEYS)
        if format == "csv":
            return to_csv(headers, rows, line_terminator="\r\n", bom=True), CONTENT_TYPES["csv"], filename
        return to_xlsx(headers, rows, sheet_title="Jobs"), CONTENT_TYPES["xlsx"], filename
