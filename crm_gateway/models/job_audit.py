from typing import Any, Optional
from sqlalchemy import JSON, Column, Integer, String, Text
from sqlalchemy.orm import Mapped

from .base import BaseModel


class JobAudit(BaseModel):
    """Durable trail of a scheduled CRM job, keyed by the id it was queued with."""

    __tablename__ = "job_audits"

    idempotency_key: Mapped[str] = Column(String(100), unique=True, nullable=False, index=True)
    payload: Mapped[Optional[Any]] = Column(JSON, nullable=True)
    status: Mapped[str] = Column(String(20), default="queued", nullable=False, index=True)  # queued|processing|completed|failed
    attempts: Mapped[int] = Column(Integer, default=0, nullable=False)
    result: Mapped[Optional[Any]] = Column(JSON, nullable=True)
    error: Mapped[Optional[str]] = Column(Text, nullable=True)
    processing_time: Mapped[Optional[int]] = Column(Integer, nullable=True)
