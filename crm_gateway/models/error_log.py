from datetime import datetime
from typing import Any, List, Optional
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped

from .base import BaseModel, utcnow

ERROR_TYPES = ("critical", "error", "warning", "info")


class ErrorLog(BaseModel):
    """Application error captured by the exception handlers or workers."""

    __tablename__ = "error_logs"

    message: Mapped[str] = Column(Text, nullable=False)
    type: Mapped[str] = Column(String(20), nullable=False, index=True)
    source: Mapped[str] = Column(String(255), nullable=False, index=True)
    environment: Mapped[str] = Column(String(50), nullable=False, index=True)
    stack_trace: Mapped[Optional[str]] = Column(Text, nullable=True)
    user_id: Mapped[Optional[str]] = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_agent: Mapped[Optional[str]] = Column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = Column(String(100), nullable=True)
    url: Mapped[Optional[str]] = Column(String(1000), nullable=True)
    method: Mapped[Optional[str]] = Column(String(10), nullable=True)
    status_code: Mapped[Optional[int]] = Column(Integer, nullable=True)
    timestamp: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    resolved: Mapped[bool] = Column(Boolean, default=False, nullable=False, index=True)
    resolved_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = Column(String(255), nullable=True)
    tags: Mapped[List[str]] = Column(JSON, default=list, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[Optional[Any]] = Column("metadata", JSON, nullable=True)
    occurrences: Mapped[int] = Column(Integer, default=1, nullable=False)
    first_seen: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_seen: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["metadata"] = data.pop("metadata_", None)
        return data

    def __repr__(self) -> str:
        return f"<ErrorLog(id={self.id}, type='{self.type}', source='{self.source}')>"
