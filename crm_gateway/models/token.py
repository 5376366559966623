from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped

from .base import BaseModel


class RefreshToken(BaseModel):
    """Refresh token record; the raw token is never stored."""

    __tablename__ = "refresh_tokens"

    token_hash: Mapped[str] = Column(String(64), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False, index=True)
    is_revoked: Mapped[bool] = Column(Boolean, default=False, nullable=False)
    revoked_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    ip_address: Mapped[Optional[str]] = Column(String(100), nullable=True)
    user_agent: Mapped[Optional[str]] = Column(String(500), nullable=True)


class TokenBlacklist(BaseModel):
    """Access tokens invalidated before their natural expiry."""

    __tablename__ = "token_blacklist"

    token_hash: Mapped[str] = Column(String(64), unique=True, nullable=False, index=True)
    user_id: Mapped[Optional[str]] = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False, index=True)
    reason: Mapped[str] = Column(String(100), default="logout", nullable=False)
    token_type: Mapped[str] = Column(String(20), default="access", nullable=False)
    ip_address: Mapped[Optional[str]] = Column(String(100), nullable=True)
    user_agent: Mapped[Optional[str]] = Column(String(500), nullable=True)
