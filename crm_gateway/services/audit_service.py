import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, or_

from crm_gateway.core.exceptions import NotFoundError, ValidationError
from crm_gateway.core.exporters import CONTENT_TYPES, to_csv, to_xlsx
from crm_gateway.core.filters import (
    build_column_filters,
    build_date_range_filter,
    pagination_meta,
    parse_boolean,
)
from crm_gateway.models.audit_log import AuditLog
from .base_service import BaseService
from .settings_service import SettingsService

SALESFORCE_METHODS = ("callPledgeChargeApi", "callPledgeApi", "callOneOffApi", "callXenditPaymentLinkApi")
CRON_JOB_METHODS = ("callPledge", "callOneoff")
EXPORT_FORMATS = ("csv", "json", "xlsx")
EXPORT_LIMIT = 10000
EXPORT_HEADERS = ["ID", "User", "Action", "Method", "Endpoint", "Status Code", "IP Address", "Created At"]


def salesforce_filter():
    """Rows produced by CRM calls, either direct or from scheduled runs."""
    return or_(
        AuditLog.method.in_(SALESFORCE_METHODS),
        and_(AuditLog.action == "CRON_JOB", AuditLog.method.in_(CRON_JOB_METHODS)),
    )


def _ago(when: Optional[datetime], now: datetime) -> str:
    if when is None:
        return "Never"
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    minutes = int((now - when).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minutes ago"
    return f"{minutes // 60} hours ago"


class AuditService(BaseService):
    """
    Writes audit rows for outbound calls and job lifecycle steps, and serves
    the filtered listings, statistics and exports over them.
    """

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def is_enabled(self) -> bool:
        enabled = await SettingsService(self.session).get_setting("security", "enableAuditLog", True)
        return enabled is not False

    async def _write(self, data: Dict[str, Any]) -> Optional[AuditLog]:
        """Persist one row; failures are logged and never reach the caller."""
        try:
            if not await self.is_enabled():
                return None
            entry = await self.audit_repo.create(data)
            await self.commit()
            return entry
        except Exception as e:
            self.logger.error("Failed to write audit log", action=data.get("action"), error=str(e))
            return None

    async def log_api_call(
        self,
        user_id: Optional[str],
        api_key_id: Optional[str],
        action: str,
        endpoint: str,
        method: str,
        type: Optional[str],
        request_data: Any,
        response_data: Any,
        status_code: Optional[int],
        ip_address: Optional[str],
        user_agent: Optional[str],
        duration: int,
        reference_id: Optional[str] = None,
        salesforce_id: Optional[str] = None,
        status_message: Optional[str] = None,
        status_payment: Optional[str] = None,
        is_delivered: bool = False,
    ) -> Optional[AuditLog]:
        return await self._write({
            "user_id": user_id,
            "api_key_id": api_key_id,
            "action": action,
            "endpoint": endpoint,
            "method": method,
            "type": type,
            "request_data": request_data,
            "response_data": response_data,
            "status_code": status_code,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "duration": int(duration or 0),
            "reference_id": reference_id,
            "salesforce_id": salesforce_id,
            "status_message": status_message,
            "status_payment": status_payment,
            "is_delivered": is_delivered,
        })

    async def log_job_processing(
        self,
        user_id: Optional[str],
        api_key_id: Optional[str],
        job_id: str,
        job_type: str,
        endpoint: str,
        status: str,
        processing_time: Optional[int] = None,
        error_message: Optional[str] = None,
        result: Any = None,
    ) -> Optional[AuditLog]:
        status_code = {"completed": 200, "failed": 500}.get(status, 202)
        return await self._write({
            "user_id": user_id,
            "api_key_id": api_key_id,
            "action": f"JOB_{status.upper()}",
            "endpoint": endpoint,
            "method": "QUEUE",
            "type": job_type,
            "request_data": {
                "jobId": job_id,
                "status": status,
                "processingTime": processing_time,
                "errorMessage": error_message,
            },
            "response_data": result,
            "status_code": status_code,
            "ip_address": "system",
            "user_agent": "queue-processor",
            "duration": processing_time or 0,
        })

    async def log_job_scheduling(
        self,
        user_id: Optional[str],
        api_key_id: Optional[str],
        job_type: str,
        endpoint: str,
        schedule_type: str,
        job_data: Dict[str, Any],
        success: bool,
        error_message: Optional[str] = None,
        is_delivered: bool = False,
    ) -> Optional[AuditLog]:
        return await self._write({
            "user_id": user_id,
            "api_key_id": api_key_id,
            "action": "JOB_SCHEDULED",
            "endpoint": endpoint,
            "method": "SCHEDULER",
            "type": job_type,
            "request_data": {
                "scheduleType": schedule_type,
                "jobData": job_data,
                "success": success,
                "errorMessage": error_message,
            },
            "response_data": {"scheduled": success},
            "status_code": 200 if success else 500,
            "ip_address": "system",
            "user_agent": "job-scheduler",
            "duration": 0,
            "is_delivered": is_delivered,
        })

    async def log_queue_operation(
        self,
        operation: str,
        user_id: Optional[str],
        api_key_id: Optional[str],
        queue_name: str,
        job_id: Optional[str] = None,
        job_data: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> Optional[AuditLog]:
        return await self._write({
            "user_id": user_id,
            "api_key_id": api_key_id,
            "action": f"QUEUE_{operation.upper()}",
            "endpoint": queue_name,
            "method": "QUEUE",
            "type": "queue_operation",
            "request_data": {
                "operation": operation,
                "queueName": queue_name,
                "jobId": job_id,
                "jobData": job_data,
                "success": success,
                "errorMessage": error_message,
            },
            "response_data": {"operation": operation, "success": success},
            "status_code": 200 if success else 500,
            "ip_address": "system",
            "user_agent": "queue-service",
            "duration": 0,
        })

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def get_undelivered_cron_jobs(self, user_id: Optional[str], job_type: Optional[str] = None,
                                        limit: Optional[int] = None) -> List[Dict[str, Any]]:
        rows = await self.audit_repo.get_undelivered_cron_jobs(user_id, job_type, limit)
        return [row.to_dict() for row in rows]

    async def mark_as_delivered(self, ids: Sequence[str]) -> Dict[str, Any]:
        """Only rows still undelivered are touched, so repeating a call is harmless."""
        updated = await self.audit_repo.mark_delivered(list(dict.fromkeys(ids)))
        await self.commit()
        return {"updated": updated, "message": f"Marked {updated} jobs as delivered"}

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    @staticmethod
    def build_conditions(filters: Dict[str, Any]) -> List[Any]:
        conditions: List[Any] = []
        if filters.get("user_id"):
            conditions.append(AuditLog.user_id == filters["user_id"])
        if filters.get("api_key_id"):
            conditions.append(AuditLog.api_key_id == filters["api_key_id"])
        if filters.get("action"):
            conditions.append(AuditLog.action.ilike(f"%{filters['action']}%"))
        if filters.get("method"):
            conditions.append(AuditLog.method == filters["method"])
        if filters.get("status_code"):
            conditions.append(AuditLog.status_code == int(filters["status_code"]))

        is_delivered = parse_boolean(filters.get("is_delivered"))
        if is_delivered is not None:
            conditions.append(AuditLog.is_delivered.is_(is_delivered))

        date_range = build_date_range_filter(AuditLog.created_at, filters.get("start_date"), filters.get("end_date"))
        if date_range is not None:
            conditions.append(date_range)

        if filters.get("search"):
            needle = f"%{filters['search']}%"
            conditions.append(or_(
                AuditLog.endpoint.ilike(needle),
                AuditLog.action.ilike(needle),
                AuditLog.method.ilike(needle),
                AuditLog.type.ilike(needle),
                AuditLog.ip_address.ilike(needle),
                AuditLog.status_message.ilike(needle),
            ))

        conditions.extend(build_column_filters(AuditLog, filters.get("column_filters")))
        return conditions

    async def _serialize(self, logs: List[AuditLog]) -> List[Dict[str, Any]]:
        users = await self.user_repo.get_names([log.user_id for log in logs])
        serialized = []
        for log in logs:
            data = log.to_dict()
            user = users.get(log.user_id)
            data["user"] = {"id": log.user_id, **user} if user else None
            serialized.append(data)
        return serialized

    async def _page(self, conditions: List[Any], page: int, limit: int) -> Dict[str, Any]:
        logs, total = await self.audit_repo.list_page(conditions, page, limit)
        return {"logs": await self._serialize(logs), "pagination": pagination_meta(page, limit, total)}

    @staticmethod
    def _page_args(filters: Dict[str, Any]) -> Tuple[int, int]:
        page = max(int(filters.get("page") or 1), 1)
        limit = max(int(filters.get("limit") or 50), 1)
        return page, limit

    async def get_user_logs(self, user_id: str, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        return await self._page([AuditLog.user_id == user_id], page, limit)

    async def get_user_stats(self, user_id: str) -> Dict[str, int]:
        now = datetime.now(timezone.utc)
        mine = AuditLog.user_id == user_id
        return {
            "today": await self.audit_repo.count_where([mine, AuditLog.created_at >= now - timedelta(hours=24)]),
            "week": await self.audit_repo.count_where([mine, AuditLog.created_at >= now - timedelta(days=7)]),
            "total": await self.audit_repo.count_where([mine]),
        }

    async def get_all_logs(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        page, limit = self._page_args(filters)
        return await self._page(self.build_conditions(filters), page, limit)

    async def get_salesforce_logs(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        page, limit = self._page_args(filters)
        return await self._page([salesforce_filter(), *self.build_conditions(filters)], page, limit)

    async def get_salesforce_log_by_id(self, log_id: str) -> Dict[str, Any]:
        log = await self.audit_repo.find_one([AuditLog.id == log_id, salesforce_filter()])
        if log is None:
            raise NotFoundError("Salesforce log not found")
        return (await self._serialize([log]))[0]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def _stats(self, base: List[Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        by_status = await self.audit_repo.group_counts("status_code", base)
        by_action = await self.audit_repo.group_counts("action", base, limit=10, most_common_first=True)
        by_method = await self.audit_repo.group_counts("method", base)

        success = sum(count for code, count in by_status if code is not None and 200 <= code < 300)
        error = sum(count for code, count in by_status if code is not None and code >= 400)
        warning = sum(count for code, count in by_status if code is not None and 300 <= code < 400)

        return {
            "today": await self.audit_repo.count_where([*base, AuditLog.created_at >= now - timedelta(hours=24)]),
            "week": await self.audit_repo.count_where([*base, AuditLog.created_at >= now - timedelta(days=7)]),
            "total": await self.audit_repo.count_where(base),
            "by_status": {"success": success, "error": error, "warning": warning},
            "by_action": {action: count for action, count in by_action},
            "by_method": {method: count for method, count in by_method},
        }

    async def get_dashboard_stats(self) -> Dict[str, Any]:
        return await self._stats([])

    async def get_salesforce_stats(self) -> Dict[str, Any]:
        return await self._stats([salesforce_filter()])

    async def get_actions(self, salesforce_only: bool = False) -> List[str]:
        return await self.audit_repo.distinct_values("action", [salesforce_filter()] if salesforce_only else [])

    async def get_methods(self, salesforce_only: bool = False) -> List[str]:
        return await self.audit_repo.distinct_values("method", [salesforce_filter()] if salesforce_only else [])

    async def get_status_codes(self, salesforce_only: bool = False) -> List[int]:
        return await self.audit_repo.distinct_values("status_code", [salesforce_filter()] if salesforce_only else [])

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    @staticmethod
    def _hour_key(value: datetime) -> str:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%dT%H")

    async def get_hourly_usage(self) -> List[Dict[str, Any]]:
        """24 hourly buckets ending with the current hour, labelled ``HH:00``."""
        current_hour = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
        first_hour = current_hour - timedelta(hours=23)
        counts = {
            self._hour_key(bucket): values
            for bucket, values in (await self.audit_repo.hourly_counts(first_hour)).items()
        }

        usage = []
        for offset in range(24):
            hour = first_hour + timedelta(hours=offset)
            values = counts.get(self._hour_key(hour), {"requests": 0, "users": 0})
            usage.append({"hour": hour.strftime("%H:00"), "requests": values["requests"], "users": values["users"]})
        return usage

    async def get_usage_stats(self) -> Dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        recent = [AuditLog.created_at >= since]

        total = await self.audit_repo.count_where(recent)
        errors = await self.audit_repo.count_where([*recent, AuditLog.status_code >= 400])
        hourly = await self.get_hourly_usage()

        return {
            "total_requests": total,
            "unique_users": await self.audit_repo.count_distinct_users(recent),
            "average_response_time": round(await self.audit_repo.average_duration(recent)),
            "peak_hourly_requests": max((bucket["requests"] for bucket in hourly), default=0),
            "error_rate": round(errors / total, 2) if total else 0,
        }

    async def get_top_endpoints(self) -> List[Dict[str, Any]]:
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        stats = await self.audit_repo.group_counts(
            "endpoint", [AuditLog.created_at >= since], limit=10, most_common_first=True
        )
        total = sum(count for _, count in stats)
        return [
            {"endpoint": endpoint, "requests": count, "percentage": round(count / total * 100, 1) if total else 0}
            for endpoint, count in stats
        ]

    async def get_user_activity(self) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        activity = await self.audit_repo.user_activity(now - timedelta(hours=24))
        users = await self.user_repo.get_names([user_id for user_id, _, _ in activity])
        return [
            {
                "user": users.get(user_id, {}).get("email", "Unknown User"),
                "requests": requests,
                "last_active": _ago(last_active, now),
            }
            for user_id, requests, last_active in activity
        ]

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export_logs(self, format: str, filters: Optional[Dict[str, Any]] = None,
                          salesforce_only: bool = False) -> Tuple[Any, str, str]:
        """Return ``(content, content_type, filename)`` for the filtered logs."""
        if format not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {format}. Use one of: {', '.join(EXPORT_FORMATS)}")

        query = {**(filters or {}), "page": 1, "limit": EXPORT_LIMIT}
        if salesforce_only:
            logs = (await self.get_salesforce_logs(query))["logs"]
        else:
            logs = (await self.get_all_logs(query))["logs"]

        prefix = "salesforce-logs" if salesforce_only else "audit-logs"
        filename = f"{prefix}-{datetime.now(timezone.utc).date().isoformat()}.{format}"

        if format == "json":
            return json.dumps(logs, indent=2, default=str), CONTENT_TYPES["json"], filename

        rows = [
            [
                log["id"],
                (log.get("user") or {}).get("name") or "System",
                log["action"],
                log["method"],
                log["endpoint"],
                log["status_code"],
                log["ip_address"],
                log["created_at"],
            ]
            for log in logs
        ]
        if format == "csv":
            return to_csv(EXPORT_HEADERS, rows, quote_all=True), CONTENT_TYPES["csv"], filename
        return to_xlsx(EXPORT_HEADERS, rows, sheet_title="Audit Logs"), CONTENT_TYPES["xlsx"], filename
