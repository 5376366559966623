import enum
from datetime import datetime
from typing import List, Optional
from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, relationship

from .base import BaseModel


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class User(BaseModel):
    """Console and API user."""

    __tablename__ = "users"

    email: Mapped[str] = Column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = Column(String(255), nullable=False)
    company: Mapped[Optional[str]] = Column(String(255), nullable=True)
    password_hash: Mapped[str] = Column(String(255), nullable=False)
    is_active: Mapped[bool] = Column(Boolean, default=True, nullable=False)
    role: Mapped[UserRole] = Column(Enum(UserRole, name="user_role"), default=UserRole.USER, nullable=False)
    failed_login_attempts: Mapped[int] = Column(Integer, default=0, nullable=False)
    last_failed_login: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    api_keys: Mapped[List["ApiKey"]] = relationship(
        "ApiKey",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "company": self.company,
            "role": self.role.value if isinstance(self.role, UserRole) else self.role,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
