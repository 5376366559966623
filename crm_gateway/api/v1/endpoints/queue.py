from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import get_current_user, require_admin
from crm_gateway.core.cache import cached, invalidates_cache
from crm_gateway.core.database import get_async_session
from crm_gateway.core.exceptions import NotFoundError, ValidationError
from crm_gateway.models.user import User
from crm_gateway.schemas.audit import ExportRequest
from crm_gateway.services.queue_monitor import QueueMonitor
from crm_gateway.services.queue_service import QueueService

router = APIRouter()


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

@router.get("/monitor/health")
@cached("queue", "monitor:health", ttl=10)
async def get_queue_health(request: Request, current_user: User = Depends(get_current_user)):
    """Per-queue job counts with a health grade from the failure ratio."""
    return await QueueMonitor().get_queue_health()


@router.get("/monitor/metrics")
@cached("queue", "monitor:metrics", ttl=15)
async def get_queue_metrics(request: Request, current_user: User = Depends(get_current_user)):
    return await QueueMonitor().get_queue_metrics()


@router.get("/monitor/detailed")
@cached("queue", "monitor:detailed", ttl=20)
async def get_detailed_stats(request: Request, current_user: User = Depends(get_current_user)):
    """Counts, pause flags, processing time and active alerts."""
    return await QueueMonitor().get_detailed_stats()


@router.get("/monitor/alerts")
@cached("queue", "monitor:alerts", ttl=15)
async def get_alerts(request: Request, current_user: User = Depends(get_current_user)):
    return await QueueMonitor().get_alerts()


@router.get("/stats")
@cached("queue", "stats", ttl=15)
async def get_queue_stats(request: Request, current_user: User = Depends(get_current_user)):
    return await QueueMonitor().get_queue_stats()


@router.get("/counts")
@cached("queue", "counts", ttl=10)
async def get_job_counts(request: Request, current_user: User = Depends(get_current_user)):
    return await QueueMonitor().get_job_counts()


@router.get("/performance")
@cached("queue", "performance", ttl=30)
async def get_performance(request: Request, current_user: User = Depends(get_current_user)):
    return await QueueMonitor().get_queue_health()


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@router.get("/jobs")
async def list_jobs(
    queue: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user)
):
    try:
        return await QueueMonitor().list_jobs(queue, status, search, page, limit)
    except ValueError as e:
        raise ValidationError(str(e))


@router.post("/export")
async def export_jobs(body: ExportRequest, current_user: User = Depends(get_current_user)):
    content, content_type, filename = await QueueMonitor().export_jobs(body.filters, body.format)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    job = await QueueService(session).find_job(job_id)
    if job is None:
        raise NotFoundError("Job not found")
    return job


@router.post("/jobs/{job_id}/retry")
@invalidates_cache("queue")
async def retry_job(
    job_id: str,
    request: Request,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    return await QueueService(session).retry_job(job_id)


@router.delete("/jobs/{job_id}")
@invalidates_cache("queue")
async def remove_job(
    job_id: str,
    request: Request,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    return await QueueService(session).remove_job(job_id)


# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------

@router.post("/queues/{queue_name}/pause")
@invalidates_cache("queue")
async def pause_queue(
    queue_name: str,
    request: Request,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    try:
        return await QueueService(session).pause_queue(queue_name)
    except ValueError as e:
        raise ValidationError(str(e))


@router.post("/queues/{queue_name}/resume")
@invalidates_cache("queue")
async def resume_queue(
    queue_name: str,
    request: Request,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    try:
        return await QueueService(session).resume_queue(queue_name)
    except ValueError as e:
        raise ValidationError(str(e))


@router.post("/queues/{queue_name}/clear")
@invalidates_cache("queue")
async def clear_queue(
    queue_name: str,
    request: Request,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_async_session)
):
    try:
        return await QueueService(session).clear_queue(queue_name)
    except ValueError as e:
        raise ValidationError(str(e))
