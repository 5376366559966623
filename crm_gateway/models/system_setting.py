from sqlalchemy import Column, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped

from .base import BaseModel

VALUE_TYPES = ("boolean", "number", "json", "string")


class SystemSetting(BaseModel):
    """Typed configuration value addressed by (category, key)."""

    __tablename__ = "system_settings"
    __table_args__ = (UniqueConstraint("category", "key", name="uq_system_settings_category_key"),)

    category: Mapped[str] = Column(String(100), nullable=False, index=True)
    key: Mapped[str] = Column(String(100), nullable=False)
    value: Mapped[str] = Column(Text, nullable=False)
    value_type: Mapped[str] = Column(String(20), default="string", nullable=False)

    def __repr__(self) -> str:
        return f"<SystemSetting({self.category}.{self.key}={self.value!r} [{self.value_type}])>"
