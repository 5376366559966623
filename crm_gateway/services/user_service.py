import re
from typing import Any, Dict, List, Optional

from crm_gateway.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from crm_gateway.core.filters import pagination_meta
from crm_gateway.core.security import AuthService
from crm_gateway.models.user import User, UserRole
from .api_key_service import ApiKeyService
from .base_service import BaseService
from .settings_service import SettingsService

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_PASSWORD_MIN_LENGTH = 8


class UserService(BaseService):
    """Account management with role checks."""

    async def create(
        self,
        email: str,
        name: str,
        password: str,
        company: Optional[str] = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        min_length = await SettingsService(self.session).get_setting(
            "security", "passwordMinLength", DEFAULT_PASSWORD_MIN_LENGTH
        )
        email = email.strip().lower()

        if await self.user_repo.get_by_email(email):
            raise ConflictError("User with this email already exists")
        if len(password) < int(min_length):
            raise ValidationError(f"Password must be at least {int(min_length)} characters long")
        if not EMAIL_RE.match(email):
            raise ValidationError("Invalid email format")

        user = await self.user_repo.create({
            "email": email,
            "name": name,
            "company": company,
            "password_hash": AuthService.get_password_hash(password),
            "role": role or UserRole.USER,
        })
        self.logger.info("User created", user_id=user.id, role=user.role.value)
        return user

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user.public_dict()

    async def update_profile(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        allowed = {key: value for key, value in data.items() if key in ("name", "company")}
        user = await self.user_repo.update(user_id, allowed)
        if user is None:
            raise NotFoundError("User not found")
        await self.commit()
        return user.public_dict()

    async def update_user_role(self, user_id: str, new_role: UserRole, requester: User) -> Dict[str, Any]:
        if not requester.is_admin:
            raise ForbiddenError("Insufficient permissions to update user roles")
        if requester.role == UserRole.ADMIN and new_role != UserRole.USER:
            raise ForbiddenError("ADMIN can only assign USER role")

        target = await self.user_repo.get_by_id(user_id)
        if target is None:
            raise NotFoundError("User not found")

        if user_id == requester.id and target.role == UserRole.SUPER_ADMIN and new_role != UserRole.SUPER_ADMIN:
            raise ForbiddenError("Cannot demote yourself from SUPER_ADMIN")

        updated = await self.user_repo.update(user_id, {"role": new_role})
        await self.commit()
        self.logger.info("User role updated", user_id=user_id, role=new_role.value, requester_id=requester.id)
        return updated.public_dict()

    async def get_all_users(self, requester: User, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        if not requester.is_admin:
            raise ForbiddenError("Insufficient permissions to view all users")
        users = await self.user_repo.list_with_api_key_counts(offset=(page - 1) * limit, limit=limit)
        total = await self.user_repo.count()
        return {"users": users, "pagination": pagination_meta(page, limit, total)}

    async def get_user_by_id(self, user_id: str, requester: User) -> Dict[str, Any]:
        if user_id != requester.id and not requester.is_admin:
            raise ForbiddenError("Insufficient permissions to view this user")
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user.public_dict()

    async def create_user_with_api_key(
        self,
        email: str,
        name: str,
        password: str,
        company: Optional[str] = None,
        api_key_name: str = "Default API Key",
        permissions: Optional[List[str]] = None,
        environment: str = "development",
        role: UserRole = UserRole.USER,
    ) -> Dict[str, Any]:
        user = await self.create(email, name, password, company, role)
        api_key = await ApiKeyService(self.session).generate_api_key(
            user.id,
            api_key_name,
            "Auto-generated API key",
            permissions or ["read"],
            environment,
        )
        await self.commit()
        return {"user": user.public_dict(), "api_key": api_key}

    @staticmethod
    def available_roles(requester: User) -> List[str]:
        if requester.role == UserRole.SUPER_ADMIN:
            return [role.value for role in UserRole]
        if requester.role == UserRole.ADMIN:
            return [UserRole.USER.value]
        return []
