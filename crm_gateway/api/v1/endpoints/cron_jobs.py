from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import get_current_user
from crm_gateway.core.cache import cached, invalidates_cache
from crm_gateway.core.database import get_async_session
from crm_gateway.models.user import User
from crm_gateway.schemas.cron import CronToggle
from crm_gateway.services.cron_jobs_service import CronJobsService

router = APIRouter()


@router.get("")
async def list_cron_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    status: Optional[str] = None,
    type: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Scheduled runs and their results, newest first."""
    return await CronJobsService(session).list_jobs(page, limit, status, type)


@router.get("/stats")
@cached("cron-jobs", "stats", ttl=60)
async def get_cron_job_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await CronJobsService(session).get_stats()


@router.get("/history")
async def get_cron_job_history(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    job_id: Optional[str] = Query(None, alias="jobId"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await CronJobsService(session).get_history(page, limit, job_id)


@router.get("/states")
@cached("cron-jobs", "states", ttl=30)
async def get_job_states(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await CronJobsService(session).states()


@router.get("/schedules")
@cached("cron-jobs", "schedules", ttl=60 * 60)
async def get_cron_schedules(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await CronJobsService(session).schedules()


@router.post("/{job_type}/run")
async def run_cron_job(
    job_type: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Trigger a scheduler run now, even if the job is switched off."""
    return await CronJobsService(session).run(job_type)


@router.put("/{job_type}/toggle")
@invalidates_cache("cron-jobs")
async def toggle_cron_job(
    job_type: str,
    body: CronToggle,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await CronJobsService(session).toggle(job_type, body.enabled)


@router.get("/{job_type}/state")
@cached("cron-jobs", "state", ttl=30)
async def get_job_state(
    job_type: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await CronJobsService(session).state(job_type)
