from datetime import datetime
from typing import Optional
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped

from .base import BaseModel


class Report(BaseModel):
    __tablename__ = "reports"

    name: Mapped[str] = Column(String(255), nullable=False)
    type: Mapped[str] = Column(String(100), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    file_path: Mapped[Optional[str]] = Column(String(1000), nullable=True)
    format: Mapped[str] = Column(String(20), default="pdf", nullable=False)
    status: Mapped[str] = Column(String(20), default="ready", nullable=False)  # ready|generating|failed
    size: Mapped[Optional[int]] = Column(Integer, nullable=True)
    schedule: Mapped[str] = Column(String(50), default="Manual", nullable=False)
    last_generated: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    user_id: Mapped[Optional[str]] = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
