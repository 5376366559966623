import os
from datetime import datetime, timezone
from typing import Any, Dict, List

from crm_gateway.core.exceptions import NotFoundError
from crm_gateway.models.report import Report
from .base_service import BaseService


class ReportService(BaseService):
    """Catalogue of generated report files."""

    async def list_reports(self) -> List[Dict[str, Any]]:
        return [report.to_dict() for report in await self.report_repo.list_recent()]

    async def _get(self, report_id: str) -> Report:
        report = await self.report_repo.get_by_id(report_id)
        if report is None:
            raise NotFoundError("Report not found")
        return report

    async def get_report(self, report_id: str) -> Dict[str, Any]:
        return (await self._get(report_id)).to_dict()

    async def generate(self, report_id: str) -> Dict[str, Any]:
        """Mark the report as generating, then ready with a fresh size and timestamp."""
        report = await self._get(report_id)
        await self.report_repo.update(report_id, {"status": "generating"})
        await self.commit()

        size = report.size or 0
        if report.file_path and os.path.isfile(report.file_path):
            size = os.path.getsize(report.file_path)

        updated = await self.report_repo.update(report_id, {
            "status": "ready",
            "last_generated": datetime.now(timezone.utc),
            "size": size,
        })
        await self.commit()
        self.logger.info("Report generated", report_id=report_id, size=size)
        return updated.to_dict()

    async def get_report_file(self, report_id: str) -> Dict[str, str]:
        report = await self._get(report_id)
        if not report.file_path:
            raise NotFoundError("No report file")
        return {
            "file_path": report.file_path,
            "file_name": f"{report.name}.{report.format or 'pdf'}",
        }
