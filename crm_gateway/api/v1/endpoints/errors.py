from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import require_super_admin
from crm_gateway.core.cache import cached, invalidates_cache
from crm_gateway.core.database import get_async_session
from crm_gateway.models.user import User
from crm_gateway.schemas.errors import BulkDeleteRequest, ErrorExportRequest, ErrorLogFilters
from crm_gateway.services.errors_service import ErrorsService

# Every route here is SUPER_ADMIN only
router = APIRouter(dependencies=[Depends(require_super_admin)])

HOUR = 60 * 60


def error_filters(
    type: Optional[str] = None,
    source: Optional[str] = None,
    environment: Optional[str] = None,
    resolved: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    page: Optional[int] = None,
    limit: Optional[int] = None,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
) -> Dict[str, Any]:
    return ErrorLogFilters(
        type=type,
        source=source,
        environment=environment,
        resolved=resolved,
        search=search,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    ).model_dump(exclude_none=True)


@router.get("")
async def list_errors(
    query: Dict[str, Any] = Depends(error_filters),
    session: AsyncSession = Depends(get_async_session)
):
    """
    Paginated error logs.

    ``page`` starts at 1 and ``limit`` is clamped to 1..100 (default 10).
    Sorting accepts timestamp, created_at, updated_at, type, source and
    environment; anything else falls back to timestamp, newest first.
    """
    return await ErrorsService(session).find_all(query)


@router.get("/stats")
@cached("errors", "stats", ttl=2 * 60)
async def get_error_stats(request: Request, session: AsyncSession = Depends(get_async_session)):
    return await ErrorsService(session).get_stats()


@router.get("/trends")
@cached("errors", "trends", include_query=True, ttl=5 * 60)
async def get_error_trends(
    request: Request,
    period: str = Query("24h", pattern=r"^(24h|7d|30d)$"),
    session: AsyncSession = Depends(get_async_session)
):
    return await ErrorsService(session).get_trends(period)


@router.get("/sources")
@cached("errors", "sources", ttl=HOUR)
async def get_sources(request: Request, session: AsyncSession = Depends(get_async_session)):
    return await ErrorsService(session).get_sources()


@router.get("/types")
@cached("errors", "types", ttl=HOUR)
async def get_types(request: Request, session: AsyncSession = Depends(get_async_session)):
    return await ErrorsService(session).get_types()


@router.get("/environments")
@cached("errors", "environments", ttl=HOUR)
async def get_environments(request: Request, session: AsyncSession = Depends(get_async_session)):
    return await ErrorsService(session).get_environments()


@router.post("/export")
async def export_errors(
    body: ErrorExportRequest,
    session: AsyncSession = Depends(get_async_session)
):
    filters = ErrorLogFilters.model_validate(body.filters).model_dump(exclude_none=True)
    content, content_type, filename = await ErrorsService(session).export(filters, body.format)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/bulk-delete")
@invalidates_cache("errors")
async def bulk_delete_errors(
    body: BulkDeleteRequest,
    request: Request,
    session: AsyncSession = Depends(get_async_session)
):
    return await ErrorsService(session).bulk_delete(body.ids)


@router.get("/{error_id}")
async def get_error(error_id: str, session: AsyncSession = Depends(get_async_session)):
    return await ErrorsService(session).find_by_id(error_id)


@router.patch("/{error_id}/resolve")
@invalidates_cache("errors")
async def resolve_error(
    error_id: str,
    request: Request,
    current_user: User = Depends(require_super_admin),
    session: AsyncSession = Depends(get_async_session)
):
    return await ErrorsService(session).resolve(error_id, current_user.email)


@router.patch("/{error_id}/unresolve")
@invalidates_cache("errors")
async def unresolve_error(
    error_id: str,
    request: Request,
    session: AsyncSession = Depends(get_async_session)
):
    return await ErrorsService(session).unresolve(error_id)


@router.delete("/{error_id}", status_code=status.HTTP_200_OK)
@invalidates_cache("errors")
async def delete_error(
    error_id: str,
    request: Request,
    session: AsyncSession = Depends(get_async_session)
):
    await ErrorsService(session).delete(error_id)
    return {"success": True, "message": "Error log deleted successfully"}
