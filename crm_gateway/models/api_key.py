from datetime import datetime
from typing import List, Optional
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, relationship

from .base import BaseModel


class ApiKey(BaseModel):
    """Machine credential for the CRM proxy endpoints; only the sha256 of the key is stored."""

    __tablename__ = "api_keys"
    __table_args__ = (UniqueConstraint("user_id", "environment", name="uq_api_keys_user_environment"),)

    key_hash: Mapped[str] = Column(String(64), unique=True, nullable=False, index=True)
    key_prefix: Mapped[str] = Column(String(12), nullable=False)
    name: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(String(500), nullable=True)
    is_active: Mapped[bool] = Column(Boolean, default=True, nullable=False)
    permissions: Mapped[List[str]] = Column(JSON, default=list, nullable=False)
    environment: Mapped[str] = Column(String(50), default="development", nullable=False)
    last_used_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    user_id: Mapped[str] = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    user: Mapped["User"] = relationship("User", back_populates="api_keys")

    def __repr__(self) -> str:
        return f"<ApiKey(id={self.id}, name='{self.name}', environment='{self.environment}')>"
