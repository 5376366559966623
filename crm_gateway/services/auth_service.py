from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from crm_gateway.core.exceptions import ForbiddenError, UnauthorizedError
from crm_gateway.core.security import AuthService as Security, DEFAULT_EXPIRY_SECONDS
from crm_gateway.models.user import User
from crm_gateway.schemas.auth import TokenPair
from .base_service import BaseService
from .settings_service import SettingsService
from .token_service import TokenService
from .user_service import UserService

DEFAULT_MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_WINDOW = timedelta(minutes=30)


class AuthService(BaseService):
    """Login, registration, refresh and logout flows."""

    def __init__(self, session):
        super().__init__(session)
        self.tokens = TokenService(session)

    async def validate_user(self, email: str, password: str) -> User:
        user = await self.user_repo.get_by_email(email)
        if user is None or not user.is_active:
            raise UnauthorizedError("Invalid credentials")

        max_attempts = await SettingsService(self.session).get_setting(
            "security", "maxLoginAttempts", DEFAULT_MAX_LOGIN_ATTEMPTS
        )
        now = datetime.now(timezone.utc)
        last_failed = user.last_failed_login
        if last_failed is not None and last_failed.tzinfo is None:
            last_failed = last_failed.replace(tzinfo=timezone.utc)

        if (
            user.failed_login_attempts >= int(max_attempts)
            and last_failed is not None
            and now - last_failed < LOCKOUT_WINDOW
        ):
            raise ForbiddenError("Maximum login attempts exceeded. Please wait 30 minutes before trying again.")

        if not Security.verify_password(password, user.password_hash):
            await self.user_repo.record_failed_login(user.id, now)
            await self.commit()
            self.logger.warning("Failed login", user_id=user.id)
            raise UnauthorizedError("Invalid credentials")

        if user.failed_login_attempts:
            await self.user_repo.reset_failed_logins(user.id)
        return user

    async def login(self, email: str, password: str, ip_address: Optional[str] = None,
                    user_agent: Optional[str] = None) -> Dict[str, Any]:
        user = await self.validate_user(email, password)
        pair = await self.tokens.generate_token_pair(user, ip_address, user_agent)
        await self.commit()
        self.logger.info("User logged in", user_id=user.id)
        return {"tokens": pair, "user": user.public_dict()}

    async def register(self, email: str, name: str, password: str, company: Optional[str] = None,
                       ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Dict[str, Any]:
        user = await UserService(self.session).create(email, name, password, company)
        pair = await self.tokens.generate_token_pair(user, ip_address, user_agent)
        await self.commit()
        return {"tokens": pair, "user": user.public_dict()}

    async def refresh(self, refresh_token: str, ip_address: Optional[str] = None,
                      user_agent: Optional[str] = None) -> TokenPair:
        return await self.tokens.refresh_access_token(refresh_token, ip_address, user_agent)

    async def logout(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str],
        user_id: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        if access_token:
            exp = Security.peek_claims(access_token).get("exp")
            if exp:
                expires_at = datetime.fromtimestamp(int(exp), tz=timezone.utc)
            else:
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=DEFAULT_EXPIRY_SECONDS)
            await self.tokens.blacklist_token(access_token, user_id, expires_at, "logout", ip_address, user_agent)

        if refresh_token:
            await self.tokens.revoke_refresh_token(refresh_token)

        await self.commit()
        self.logger.info("User logged out", user_id=user_id)
