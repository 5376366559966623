from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import get_current_user
from crm_gateway.core.cache import cached, invalidates_cache
from crm_gateway.core.database import get_async_session
from crm_gateway.core.exceptions import ValidationError
from crm_gateway.models.user import User
from crm_gateway.schemas.audit import AuditLogFilters, ExportRequest, MarkDeliveredRequest
from crm_gateway.services.audit_service import AuditService

router = APIRouter()

MINUTE = 60
HOUR = 60 * MINUTE


def audit_filters(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    user_id: Optional[str] = Query(None, alias="userId"),
    api_key_id: Optional[str] = Query(None, alias="apiKeyId"),
    action: Optional[str] = None,
    method: Optional[str] = None,
    status_code: Optional[int] = Query(None, alias="statusCode"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    search: Optional[str] = None,
    is_delivered: Optional[str] = Query(None, alias="isDelivered"),
    column_filters: Optional[str] = Query(None, alias="columnFilters"),
) -> Dict[str, Any]:
    return AuditLogFilters(
        page=page,
        limit=limit,
        user_id=user_id,
        api_key_id=api_key_id,
        action=action,
        method=method,
        status_code=status_code,
        start_date=start_date,
        end_date=end_date,
        search=search,
        is_delivered=is_delivered,
        column_filters=column_filters,
    ).model_dump(exclude_none=True)


def export_response(content, content_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def export_filters(body: ExportRequest) -> Dict[str, Any]:
    """Export bodies may use either camelCase or snake_case filter names."""
    try:
        return AuditLogFilters.model_validate(body.filters).model_dump(exclude_none=True)
    except PydanticValidationError as e:
        raise ValidationError("Invalid export filters", details=jsonable_encoder(e.errors()))


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/logs")
async def get_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Audit rows belonging to the current user."""
    return await AuditService(session).get_user_logs(current_user.id, page, limit)


@router.get("/stats")
@cached("audit", "stats", include_user_id=True, ttl=MINUTE)
async def get_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_user_stats(current_user.id)


@router.get("/cron-jobs")
async def get_undelivered_cron_jobs(
    job_type: Optional[str] = Query(None, alias="jobType"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_undelivered_cron_jobs(current_user.id, job_type)


@router.post("/mark-delivered")
@invalidates_cache("audit", additional_keys=("audit:stats:*", "audit:dashboard:stats"))
async def mark_as_delivered(
    body: MarkDeliveredRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Flag the given cron-job rows as delivered; already delivered ids are left alone."""
    return await AuditService(session).mark_as_delivered(body.ids)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

@router.get("/dashboard/logs")
async def get_dashboard_logs(
    filters: Dict[str, Any] = Depends(audit_filters),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_all_logs(filters)


@router.get("/dashboard/salesforce-logs")
async def get_dashboard_salesforce_logs(
    filters: Dict[str, Any] = Depends(audit_filters),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_salesforce_logs(filters)


@router.get("/dashboard/salesforce-logs/stats")
@cached("audit", "dashboard:salesforce-logs:stats", ttl=2 * MINUTE)
async def get_salesforce_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_salesforce_stats()


@router.get("/dashboard/stats")
@cached("audit", "dashboard:stats", ttl=2 * MINUTE)
async def get_dashboard_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_dashboard_stats()


@router.get("/actions")
@cached("audit", "actions", ttl=HOUR)
async def get_actions(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_actions()


@router.get("/methods")
@cached("audit", "methods", ttl=HOUR)
async def get_methods(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_methods()


@router.get("/status-codes")
@cached("audit", "status-codes", ttl=HOUR)
async def get_status_codes(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_status_codes()


@router.post("/export")
async def export_logs(
    body: ExportRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Download the filtered audit logs as csv, json or xlsx."""
    content, content_type, filename = await AuditService(session).export_logs(body.format, export_filters(body))
    return export_response(content, content_type, filename)


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

@router.get("/analytics/usage-stats")
@cached("audit", "analytics:usage-stats", ttl=5 * MINUTE)
async def get_usage_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_usage_stats()


@router.get("/analytics/hourly-usage")
@cached("audit", "analytics:hourly-usage", ttl=5 * MINUTE)
async def get_hourly_usage(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_hourly_usage()


@router.get("/analytics/top-endpoints")
@cached("audit", "analytics:top-endpoints", ttl=5 * MINUTE)
async def get_top_endpoints(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_top_endpoints()


@router.get("/analytics/user-activity")
@cached("audit", "analytics:user-activity", ttl=3 * MINUTE)
async def get_user_activity(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_user_activity()


# ---------------------------------------------------------------------------
# CRM call logs
# ---------------------------------------------------------------------------

@router.post("/salesforce-logs/export")
async def export_salesforce_logs(
    body: ExportRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    content, content_type, filename = await AuditService(session).export_logs(
        body.format, export_filters(body), salesforce_only=True
    )
    return export_response(content, content_type, filename)


@router.get("/salesforce-logs/actions")
@cached("audit", "salesforce-logs:actions", ttl=HOUR)
async def get_salesforce_actions(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_actions(salesforce_only=True)


@router.get("/salesforce-logs/methods")
@cached("audit", "salesforce-logs:methods", ttl=HOUR)
async def get_salesforce_methods(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_methods(salesforce_only=True)


@router.get("/salesforce-logs/status-codes")
@cached("audit", "salesforce-logs:status-codes", ttl=HOUR)
async def get_salesforce_status_codes(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_status_codes(salesforce_only=True)


@router.get("/salesforce-logs/{log_id}")
async def get_salesforce_log(
    log_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await AuditService(session).get_salesforce_log_by_id(log_id)
