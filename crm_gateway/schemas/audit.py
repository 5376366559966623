from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field


class AuditLogFilters(BaseModel):
    """Query filters shared by the audit listings and exports."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=10000)
    user_id: Optional[str] = Field(None, alias="userId")
    api_key_id: Optional[str] = Field(None, alias="apiKeyId")
    action: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = Field(None, alias="statusCode")
    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")
    search: Optional[str] = None
    is_delivered: Optional[Union[bool, str]] = Field(None, alias="isDelivered")
    column_filters: Optional[Union[str, Dict[str, Any]]] = Field(None, alias="columnFilters")

    class Config:
        populate_by_name = True


class ExportRequest(BaseModel):
    """Export body; the format is checked by the service so a bad value never reaches the store."""

    format: str = "csv"
    filters: Dict[str, Any] = Field(default_factory=dict)


class MarkDeliveredRequest(BaseModel):
    ids: List[str] = Field(..., alias="jobIds")

    class Config:
        populate_by_name = True
