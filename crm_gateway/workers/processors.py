import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from crm_gateway.core.config import settings
from crm_gateway.core.database import worker_session
from crm_gateway.core.queue_policies import EMAIL_QUEUE, NOTIFICATIONS_QUEUE, SALESFORCE_QUEUE
from crm_gateway.core.salesforce_client import SalesforceClient, salesforce_client
from crm_gateway.repositories import JobAuditRepository
from crm_gateway.services.audit_service import AuditService
from crm_gateway.services.errors_service import ErrorsService
from .base_processor import BaseProcessor, ProcessorMetrics

METRICS_INTERVAL_SECONDS = 300
RETRYABLE_ERRORS = ("SERVER_ERROR", "CONNECTION_ERROR", "RATE_LIMIT_ERROR", "TIMEOUT_ERROR")


class CrmCallError(Exception):
    """The CRM answered with an error status or could not be reached."""

    def __init__(self, message: str, status_code: int = 0, error_type: Optional[str] = None,
                 response: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.response = response


def categorize_error(error: BaseException) -> str:
    if isinstance(error, CrmCallError):
        if error.status_code == 401:
            return "AUTHENTICATION_ERROR"
        if error.status_code == 403:
            return "AUTHORIZATION_ERROR"
        if error.status_code == 429:
            return "RATE_LIMIT_ERROR"
        if error.status_code >= 500:
            return "SERVER_ERROR"
        if error.error_type == "connection":
            return "CONNECTION_ERROR"
        if error.error_type == "timeout":
            return "TIMEOUT_ERROR"
    if isinstance(error, httpx.TimeoutException):
        return "TIMEOUT_ERROR"
    if isinstance(error, httpx.ConnectError):
        return "CONNECTION_ERROR"
    return "UNKNOWN_ERROR"


def error_log_type(category: str) -> str:
    if category in ("SERVER_ERROR", "CONNECTION_ERROR"):
        return "critical"
    if category in ("AUTHENTICATION_ERROR", "AUTHORIZATION_ERROR"):
        return "error"
    return "warning"


def result_items(data: Any) -> List[Any]:
    """The CRM answers with a list (wrapped under ``data``) or a single object."""
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"]
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return []


class SalesforceProcessor(BaseProcessor):
    """
    Executes scheduled CRM calls.

    Each result item carrying a ``Success`` flag becomes a ``CRON_JOB`` audit
    row that API clients later collect through the cron-jobs endpoints.
    """

    def __init__(self, client: SalesforceClient = None):
        super().__init__(SALESFORCE_QUEUE)
        self.client = client or salesforce_client
        self.metrics = ProcessorMetrics()
        self._metrics_logged_at = time.time()

    def job_context(self, job: Dict[str, Any]) -> Dict[str, Any]:
        data = job.get("data") or {}
        return {
            **super().job_context(job),
            "user_id": data.get("user_id"),
            "endpoint": data.get("endpoint"),
            "type": data.get("type"),
        }

    def should_retry(self, job: Dict[str, Any], error: BaseException) -> bool:
        return categorize_error(error) in RETRYABLE_ERRORS and super().should_retry(job, error)

    async def process(self, job: Dict[str, Any]) -> Dict[str, Any]:
        data = job["data"]
        job_id = job["id"]
        endpoint = data["endpoint"]
        job_type = data.get("type") or "unknown"
        audit_id = data.get("audit_id")
        user_id = data.get("user_id")
        api_key_id = data.get("api_key_id")
        start_time = time.time()

        async with worker_session() as session:
            await AuditService(session).log_job_processing(
                user_id, api_key_id, job_id, "salesforce_api", endpoint, "started"
            )
            if audit_id:
                await JobAuditRepository(session).update_status(
                    audit_id, "processing", attempts=job.get("attempts_made", 0) + 1
                )

        try:
            response = await self.client.direct_api(
                endpoint,
                data.get("payload"),
                headers={"Authorization": f"Bearer {data.get('token')}", "ClientId": data.get("client_id") or ""},
            )

            await self._record_items(response, data, job_type, start_time)

            if response["error"]:
                raise CrmCallError(
                    f"CRM call failed with status {response['http_code']}",
                    status_code=response["http_code"],
                    error_type=response.get("error_type"),
                    response=response["data"],
                )
        except Exception as e:
            processing_time = int((time.time() - start_time) * 1000)
            await self._record_failure(job, e, processing_time)
            self._record_metrics(processing_time, False)
            raise

        processing_time = int((time.time() - start_time) * 1000)
        async with worker_session() as session:
            if audit_id:
                await JobAuditRepository(session).update_status(
                    audit_id, "completed", result=response, processing_time=processing_time
                )
            await AuditService(session).log_job_processing(
                user_id, api_key_id, job_id, "salesforce_api", endpoint, "completed",
                processing_time=processing_time,
                result={
                    "status": "completed",
                    "message": "Salesforce job processed successfully",
                    "job_id": job_id,
                    "processing_time": processing_time,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )

        self._record_metrics(processing_time, True)
        return response

    async def _record_items(self, response: Dict[str, Any], data: Dict[str, Any], job_type: str,
                            start_time: float):
        items = [
            item for item in result_items(response["data"])
            if isinstance(item, dict) and item.get("Success") is not None
        ]
        if not items:
            return

        method = "call" + job_type[:1].upper() + job_type[1:]
        async with worker_session() as session:
            audit = AuditService(session)
            for item in items:
                await audit.log_api_call(
                    data.get("user_id"), None, "CRON_JOB", data["endpoint"], method, job_type,
                    data.get("payload"), item, response["http_code"], "system", "queue-processor",
                    int((time.time() - start_time) * 1000),
                    reference_id=item.get("OrderId"),
                    salesforce_id=item.get("Id"),
                    status_message=item.get("Message"),
                )

    async def _record_failure(self, job: Dict[str, Any], error: BaseException, processing_time: int):
        data = job["data"]
        category = categorize_error(error)
        will_retry = self.should_retry(job, error)

        if will_retry:
            self.logger.warning(
                "Job will be retried", job_id=job["id"], error_type=category, attempt=job.get("attempts_made", 0) + 1
            )
            return

        try:
            async with worker_session() as session:
                if data.get("audit_id"):
                    await JobAuditRepository(session).update_status(
                        data["audit_id"], "failed", error=str(error), processing_time=processing_time
                    )
                await AuditService(session).log_job_processing(
                    data.get("user_id"), data.get("api_key_id"), job["id"], "salesforce_api",
                    data.get("endpoint") or "", "failed",
                    processing_time=processing_time, error_message=str(error),
                )
                await ErrorsService(session).log_error({
                    "message": f"Salesforce job {job['id']} failed: {error}",
                    "type": error_log_type(category),
                    "source": "salesforce-processor",
                    "environment": settings.ENVIRONMENT,
                    "user_id": data.get("user_id"),
                    "status_code": getattr(error, "status_code", None) or None,
                    "metadata": {
                        "job_id": job["id"],
                        "endpoint": data.get("endpoint"),
                        "error_type": category,
                        "processing_time": processing_time,
                        "attempts_made": job.get("attempts_made", 0),
                        "should_retry": will_retry,
                    },
                })
        except Exception as log_error:
            self.logger.error(
                "Failed to log error to ErrorLog", job_id=job["id"], original_error=str(error), error=str(log_error)
            )

    def _record_metrics(self, processing_time: int, success: bool):
        self.metrics.record(processing_time, success)
        if time.time() - self._metrics_logged_at >= METRICS_INTERVAL_SECONDS:
            self.logger.metrics(self.metrics.snapshot("salesforce_processor"))
            self._metrics_logged_at = time.time()


class EmailProcessor(BaseProcessor):
    """Email delivery is not wired to a provider; jobs are logged and acknowledged."""

    def __init__(self):
        super().__init__(EMAIL_QUEUE)

    async def process(self, job: Dict[str, Any]) -> Dict[str, Any]:
        data = job.get("data") or {}
        self.logger.info("Sending email", job_id=job["id"], to=data.get("to"), subject=data.get("subject"))
        return {
            "success": True,
            "message_id": f"msg_{uuid.uuid4().hex[:12]}",
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }


class NotificationProcessor(BaseProcessor):
    """Notification fan-out placeholder with the same lifecycle as the other queues."""

    def __init__(self):
        super().__init__(NOTIFICATIONS_QUEUE)

    async def process(self, job: Dict[str, Any]) -> Dict[str, Any]:
        data = job.get("data") or {}
        self.logger.info(
            "Sending notification", job_id=job["id"], user_id=data.get("user_id"), channel=data.get("type")
        )
        return {
            "success": True,
            "notification_id": f"notif_{uuid.uuid4().hex[:12]}",
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
