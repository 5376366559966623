from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field


class ErrorLogFilters(BaseModel):
    type: Optional[str] = None
    source: Optional[str] = None
    environment: Optional[str] = None
    resolved: Optional[Union[bool, str]] = None
    search: Optional[str] = None
    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")
    page: Optional[int] = None
    limit: Optional[int] = None
    sort_by: Optional[str] = Field(None, alias="sortBy")
    sort_order: Optional[str] = Field(None, alias="sortOrder")

    class Config:
        populate_by_name = True


class ErrorExportRequest(BaseModel):
    format: str = "csv"
    filters: Dict[str, Any] = Field(default_factory=dict)


class BulkDeleteRequest(BaseModel):
    ids: List[str]
