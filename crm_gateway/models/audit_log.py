from typing import Any, Optional
from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped

from .base import BaseModel


class AuditLog(BaseModel):
    """One row per outbound call attempt, job lifecycle step or scheduled run."""

    __tablename__ = "audit_logs"

    user_id: Mapped[Optional[str]] = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    api_key_id: Mapped[Optional[str]] = Column(String(36), ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True, index=True)
    action: Mapped[str] = Column(String(100), nullable=False, index=True)
    endpoint: Mapped[str] = Column(String(500), nullable=False)
    method: Mapped[str] = Column(String(100), nullable=False, index=True)
    type: Mapped[Optional[str]] = Column(String(100), nullable=True, index=True)
    request_data: Mapped[Optional[Any]] = Column(JSON, nullable=True)
    response_data: Mapped[Optional[Any]] = Column(JSON, nullable=True)
    status_code: Mapped[Optional[int]] = Column(Integer, nullable=True, index=True)
    ip_address: Mapped[Optional[str]] = Column(String(100), nullable=True)
    user_agent: Mapped[Optional[str]] = Column(String(500), nullable=True)
    duration: Mapped[int] = Column(Integer, default=0, nullable=False)  # milliseconds
    is_delivered: Mapped[bool] = Column(Boolean, default=False, nullable=False, index=True)
    reference_id: Mapped[Optional[str]] = Column(String(255), nullable=True)
    salesforce_id: Mapped[Optional[str]] = Column(String(255), nullable=True)
    status_message: Mapped[Optional[str]] = Column(Text, nullable=True)
    status_payment: Mapped[Optional[str]] = Column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action='{self.action}', method='{self.method}')>"
