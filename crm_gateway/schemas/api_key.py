from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    environment: str = Field(default="development", max_length=50)
    permissions: List[str] = Field(default_factory=list)


class ApiKeyRevoke(BaseModel):
    key_id: str = Field(..., alias="keyId")

    class Config:
        populate_by_name = True


class ApiKeyResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    key_prefix: str
    environment: str
    permissions: List[str]
    is_active: bool
    last_used_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class GeneratedApiKey(ApiKeyResponse):
    """Returned once at creation; the raw key is never retrievable again."""

    key: str
