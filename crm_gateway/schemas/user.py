from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field

from crm_gateway.models.user import UserRole


class UserCreate(BaseModel):
    """Schema for creating a user."""

    email: EmailStr
    name: str = Field(..., min_length=2, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)
    company: Optional[str] = Field(None, max_length=255)
    role: Optional[UserRole] = None


class UserUpdate(BaseModel):
    """Profile fields a user may change on their own account."""

    name: Optional[str] = Field(None, min_length=2, max_length=255)
    company: Optional[str] = Field(None, max_length=255)


class RoleUpdate(BaseModel):
    role: UserRole


class UserWithApiKeyCreate(UserCreate):
    api_key_name: str = Field(default="Default API Key", max_length=255)
    environment: str = Field(default="development", max_length=50)
    permissions: List[str] = Field(default_factory=list)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    company: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
