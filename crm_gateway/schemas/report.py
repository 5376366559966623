from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ReportResponse(BaseModel):
    id: str
    name: str
    type: str
    description: Optional[str] = None
    format: str
    status: str
    size: Optional[int] = None
    schedule: str
    last_generated: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
