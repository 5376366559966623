import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_

from crm_gateway.core.exceptions import NotFoundError, ValidationError
from crm_gateway.core.exporters import CONTENT_TYPES, humanize_header, rows_from_dicts, to_csv, to_xlsx
from crm_gateway.core.filters import build_date_range_filter, extract_pagination, parse_boolean
from crm_gateway.models.error_log import ERROR_TYPES, ErrorLog
from .base_service import BaseService

SORT_FIELDS = {
    "timestamp": "timestamp",
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "type": "type",
    "source": "source",
    "environment": "environment",
}
BULK_DELETE_LIMIT = 1000
EXPORT_FORMATS = ("csv", "xlsx", "json")
EMPTY_EXPORT_HEADERS = ["ID", "Message", "Type", "Source", "Environment", "Created At"]
TREND_PERIODS = {"24h": 1, "7d": 7, "30d": 30}
REQUIRED_FIELDS = ("message", "type", "source", "environment")


class ErrorsService(BaseService):
    """Browse, resolve, export and record application error logs."""

    @staticmethod
    def build_conditions(query: Dict[str, Any]) -> List[Any]:
        conditions: List[Any] = []
        for field in ("type", "source", "environment"):
            if query.get(field):
                conditions.append(getattr(ErrorLog, field) == query[field])

        resolved = parse_boolean(query.get("resolved"))
        if resolved is not None:
            conditions.append(ErrorLog.resolved.is_(resolved))

        if query.get("search"):
            needle = f"%{query['search']}%"
            conditions.append(or_(
                ErrorLog.message.ilike(needle),
                ErrorLog.source.ilike(needle),
                ErrorLog.type.ilike(needle),
            ))

        date_range = build_date_range_filter(ErrorLog.timestamp, query.get("start_date"), query.get("end_date"))
        if date_range is not None:
            conditions.append(date_range)
        return conditions

    async def find_all(self, query: Dict[str, Any]) -> Dict[str, Any]:
        page, limit = extract_pagination(query.get("page"), query.get("limit"), default_limit=10, max_limit=100)
        sort_by = SORT_FIELDS.get(query.get("sort_by") or "timestamp", "timestamp")
        descending = (query.get("sort_order") or "desc").lower() != "asc"

        errors, total = await self.error_repo.list_page(
            self.build_conditions(query), page, limit, sort_by=sort_by, descending=descending
        )
        return {
            "data": [error.to_dict() for error in errors],
            "pagination": {"page": page, "limit": limit, "total": total},
        }

    async def find_by_id(self, error_id: str) -> Dict[str, Any]:
        error = await self.error_repo.get_by_id(error_id)
        if error is None:
            raise NotFoundError(f"Error log with ID {error_id} not found")
        return error.to_dict()

    async def get_stats(self) -> Dict[str, Any]:
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        stats: Dict[str, Any] = {
            "total": await self.error_repo.count_where(),
            "unresolved": await self.error_repo.count_where([ErrorLog.resolved.is_(False)]),
        }
        for error_type in ERROR_TYPES:
            stats[error_type] = await self.error_repo.count_where([ErrorLog.type == error_type])
        stats["today"] = await self.error_repo.count_where([ErrorLog.timestamp >= today])
        stats["avg_occurrences"] = round(await self.error_repo.average_occurrences(), 2)
        stats["top_sources"] = [
            {"source": source, "count": count} for source, count in await self.error_repo.top_values("source")
        ]
        stats["top_types"] = [
            {"type": error_type, "count": count} for error_type, count in await self.error_repo.top_values("type")
        ]
        return stats

    async def get_trends(self, period: str = "24h") -> List[Dict[str, Any]]:
        """Hourly buckets for ``24h``, daily buckets for ``7d`` and ``30d``."""
        days = TREND_PERIODS.get(period, 1)
        now = datetime.now(timezone.utc)
        errors = await self.error_repo.created_since(now - timedelta(days=days))

        hourly = days == 1
        key_format = "%H:00" if hourly else "%Y-%m-%d"
        buckets: Dict[str, Dict[str, Any]] = {}

        if hourly:
            first = now.replace(minute=0, second=0, microsecond=0) - timedelta(hours=23)
            keys = [(first + timedelta(hours=i)).strftime(key_format) for i in range(24)]
        else:
            first = now - timedelta(days=days - 1)
            keys = [(first + timedelta(days=i)).strftime(key_format) for i in range(days)]
        for key in keys:
            buckets[key] = {"date": key, "count": 0, "resolved": 0, "critical": 0, "error": 0, "warning": 0}

        for error in errors:
            created = error.created_at
            if created.tzinfo is not None:
                created = created.astimezone(timezone.utc)
            bucket = buckets.get(created.strftime(key_format))
            if bucket is None:
                continue
            bucket["count"] += 1
            if error.resolved:
                bucket["resolved"] += 1
            if error.type in ("critical", "error", "warning"):
                bucket[error.type] += 1

        return list(buckets.values())

    async def _set_resolved(self, error_id: str, resolved: bool, resolved_by: Optional[str]) -> Dict[str, Any]:
        error = await self.error_repo.set_resolved(
            error_id,
            resolved,
            resolved_by=resolved_by if resolved else None,
            resolved_at=datetime.now(timezone.utc) if resolved else None,
        )
        if error is None:
            raise NotFoundError(f"Error log with ID {error_id} not found")
        await self.commit()
        self.logger.info("Error log resolution changed", error_id=error_id, resolved=resolved)
        return error.to_dict()

    async def resolve(self, error_id: str, resolved_by: Optional[str] = None) -> Dict[str, Any]:
        return await self._set_resolved(error_id, True, resolved_by or "system")

    async def unresolve(self, error_id: str) -> Dict[str, Any]:
        return await self._set_resolved(error_id, False, None)

    async def delete(self, error_id: str) -> None:
        if not await self.error_repo.delete(error_id):
            raise NotFoundError(f"Error log with ID {error_id} not found")
        await self.commit()

    async def bulk_delete(self, ids: Sequence[Any]) -> Dict[str, Any]:
        valid = [i for i in dict.fromkeys(ids) if isinstance(i, str) and i.strip()]
        if not valid:
            raise ValidationError("No valid IDs provided")
        if len(valid) > BULK_DELETE_LIMIT:
            raise ValidationError(f"Cannot delete more than {BULK_DELETE_LIMIT} errors at once")

        deleted = await self.error_repo.delete_many(valid)
        await self.commit()

        missing = [i for i in valid if i not in set(deleted)]
        return {
            "deleted": len(deleted),
            "failed": len(missing),
            "errors": [f"Error log with ID {i} not found" for i in missing],
        }

    async def export(self, filters: Dict[str, Any], format: str = "csv") -> Tuple[Any, str, str]:
        """Return ``(content, content_type, filename)``."""
        if format not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {format}")

        conditions = self.build_conditions(filters or {})
        errors, _ = await self.error_repo.list_page(conditions, 1, 10000)
        records = [error.to_dict() for error in errors]
        filename = f"errors-{datetime.now(timezone.utc).date().isoformat()}.{format}"

        if format == "json":
            return json.dumps(records, indent=2, default=str), CONTENT_TYPES["json"], filename

        keys = list(records[0].keys()) if records else []
        headers = [humanize_header(key) for key in keys] if keys else EMPTY_EXPORT_HEADERS
        rows = rows_from_dicts(records, keys)

        if format == "csv":
            content = to_csv(headers, rows, line_terminator="\r\n", bom=True)
            return content, CONTENT_TYPES["csv"], filename
        return to_xlsx(headers, rows, sheet_title="Errors"), CONTENT_TYPES["xlsx"], filename

    async def get_sources(self) -> List[str]:
        return await self.error_repo.distinct_values("source")

    async def get_types(self) -> List[str]:
        return await self.error_repo.distinct_values("type")

    async def get_environments(self) -> List[str]:
        return await self.error_repo.distinct_values("environment")

    async def log_error(self, data: Dict[str, Any]) -> Dict[str, Any]:
        missing = [field for field in REQUIRED_FIELDS if not data.get(field)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        values = {k: v for k, v in data.items() if hasattr(ErrorLog, k) and k != "metadata"}
        if "metadata" in data:
            values["metadata_"] = data["metadata"]
        values.setdefault("tags", [])

        error = await self.error_repo.create(values)
        await self.commit()
        return error.to_dict()
