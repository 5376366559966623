import uuid
from datetime import datetime, timezone
from typing import Any
from sqlalchemy import Column, DateTime, String, func, inspect
from sqlalchemy.orm import Mapped, declared_attr

from crm_gateway.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin for adding timestamp fields to models."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return Column(
            DateTime(timezone=True),
            default=utcnow,
            server_default=func.now(),
            onupdate=utcnow,
            nullable=False
        )


class BaseModel(Base, TimestampMixin):
    """Base model class with a string UUID primary key."""

    __abstract__ = True

    @declared_attr
    def id(cls) -> Mapped[str]:
        return Column(String(36), primary_key=True, default=new_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert model instance to dictionary keyed by attribute name."""
        return {attr.key: getattr(self, attr.key) for attr in inspect(type(self)).column_attrs}
