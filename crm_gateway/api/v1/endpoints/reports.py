import os
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import get_current_user
from crm_gateway.core.database import get_async_session
from crm_gateway.core.exceptions import NotFoundError
from crm_gateway.models.user import User
from crm_gateway.schemas.report import ReportResponse
from crm_gateway.services.report_service import ReportService

router = APIRouter()


@router.get("", response_model=List[ReportResponse])
async def list_reports(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await ReportService(session).list_reports()


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    return await ReportService(session).get_report(report_id)


@router.post("/{report_id}/generate", response_model=ReportResponse)
async def generate_report(
    report_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Regenerate a report and refresh its size and timestamp."""
    return await ReportService(session).generate(report_id)


@router.get("/{report_id}/download")
async def download_report(
    report_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    report_file = await ReportService(session).get_report_file(report_id)
    if not os.path.isfile(report_file["file_path"]):
        raise NotFoundError("No report file")
    return FileResponse(report_file["file_path"], filename=report_file["file_name"])
