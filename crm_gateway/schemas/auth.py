from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator


class LoginRequest(BaseModel):
    """Schema for user login request."""

    email: EmailStr
    password: str = Field(..., min_length=1, description="User password")


class RegisterRequest(BaseModel):
    """Schema for user registration request."""

    email: EmailStr
    name: str = Field(..., min_length=2, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)
    company: Optional[str] = Field(None, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return v


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(None, alias="refreshToken")

    class Config:
        populate_by_name = True


class TokenPair(BaseModel):
    """Access/refresh pair; lifetimes are in seconds."""

    access_token: str
    refresh_token: str
    access_token_expires_in: int
    refresh_token_expires_in: int


class AuthResponse(BaseModel):
    success: bool = True
    user: dict
    access_token_expires_in: int
    refresh_token_expires_in: int
