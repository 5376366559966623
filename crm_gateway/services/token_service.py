from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from crm_gateway.core.config import settings
from crm_gateway.core.exceptions import RefreshTokenError, TokenValidationError
from crm_gateway.core.security import AuthService, generate_refresh_token, hash_token, parse_expiry
from crm_gateway.models.user import User
from crm_gateway.schemas.auth import TokenPair
from .base_service import BaseService


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class TokenService(BaseService):
    """
    Issues access/refresh token pairs and maintains the access-token blacklist.

    Refresh tokens are opaque random strings; only their sha256 digest is
    persisted, and each one can be exchanged exactly once.
    """

    @property
    def access_token_expires_in(self) -> int:
        return parse_expiry(settings.JWT_EXPIRES_IN)

    @property
    def refresh_token_expires_in(self) -> int:
        return settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    async def generate_token_pair(self, user: User, ip_address: Optional[str] = None,
                                  user_agent: Optional[str] = None) -> TokenPair:
        access_expires_in = self.access_token_expires_in
        refresh_expires_in = self.refresh_token_expires_in

        role = user.role.value if hasattr(user.role, "value") else user.role
        access_token = AuthService.create_access_token(
            {"sub": user.id, "email": user.email, "name": user.name, "role": role, "type": "access"},
            access_expires_in,
        )

        refresh_token = generate_refresh_token()
        await self.refresh_token_repo.create({
            "token_hash": hash_token(refresh_token),
            "user_id": user.id,
            "expires_at": datetime.now(timezone.utc) + timedelta(seconds=refresh_expires_in),
            "ip_address": ip_address,
            "user_agent": user_agent,
        })

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_in=access_expires_in,
            refresh_token_expires_in=refresh_expires_in,
        )

    async def refresh_access_token(self, refresh_token: str, ip_address: Optional[str] = None,
                                   user_agent: Optional[str] = None) -> TokenPair:
        token_hash = hash_token(refresh_token)
        stored = await self.refresh_token_repo.get_by_hash(token_hash)

        if stored is None:
            self.logger.warning("Refresh token not found", ip_address=ip_address)
            raise RefreshTokenError("Invalid refresh token")

        if stored.is_revoked:
            self.logger.warning("Refresh token has been revoked", user_id=stored.user_id, ip_address=ip_address)
            raise RefreshTokenError("Refresh token has been revoked")

        now = datetime.now(timezone.utc)
        if _as_aware(stored.expires_at) < now:
            await self.refresh_token_repo.revoke_if_active(token_hash, now)
            await self.commit()
            self.logger.warning("Refresh token has expired", user_id=stored.user_id, ip_address=ip_address)
            raise RefreshTokenError("Refresh token has expired")

        # Single use: only the request whose UPDATE flips the row may continue
        if not await self.refresh_token_repo.revoke_if_active(token_hash, now):
            self.logger.warning("Refresh token reused concurrently", user_id=stored.user_id, ip_address=ip_address)
            raise RefreshTokenError("Refresh token has been revoked")

        user = await self.user_repo.get_by_id(stored.user_id)
        if user is None or not user.is_active:
            raise RefreshTokenError("Invalid refresh token")

        pair = await self.generate_token_pair(user, ip_address, user_agent)
        await self.commit()
        return pair

    async def revoke_refresh_token(self, refresh_token: str) -> None:
        await self.refresh_token_repo.revoke_if_active(hash_token(refresh_token), datetime.now(timezone.utc))

    async def revoke_all_user_tokens(self, user_id: str) -> int:
        return await self.refresh_token_repo.revoke_all_for_user(user_id, datetime.now(timezone.utc))

    async def blacklist_token(
        self,
        token: str,
        user_id: Optional[str],
        expires_at: datetime,
        reason: str = "logout",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        token_hash = hash_token(token)
        if await self.blacklist_repo.get_by_hash(token_hash):
            return
        await self.blacklist_repo.create({
            "token_hash": token_hash,
            "token_type": "access",
            "user_id": user_id,
            "expires_at": expires_at,
            "reason": reason,
            "ip_address": ip_address,
            "user_agent": user_agent,
        })

    async def is_token_blacklisted(self, token: str) -> bool:
        """
        True when the token is on the blacklist and that entry has not expired.

        Storage errors raise ``TokenValidationError`` so callers deny access
        instead of treating an unknown state as clean.
        """
        try:
            entry = await self.blacklist_repo.get_by_hash(hash_token(token))
        except Exception as e:
            self.logger.error("Token blacklist check failed", error=str(e))
            raise TokenValidationError("Token validation failed") from e

        if entry is None:
            return False
        return _as_aware(entry.expires_at) >= datetime.now(timezone.utc)

    async def cleanup_expired_tokens(self) -> Dict[str, int]:
        now = datetime.now(timezone.utc)
        blacklisted = await self.blacklist_repo.delete_expired(now)
        refresh = await self.refresh_token_repo.delete_expired(now)
        await self.commit()
        self.logger.info("Expired tokens cleaned up", refresh_tokens=refresh, blacklisted_tokens=blacklisted)
        return {"refresh_tokens": refresh, "blacklisted_tokens": blacklisted}

    async def get_user_refresh_tokens(self, user_id: str) -> List[Dict[str, Any]]:
        tokens = await self.refresh_token_repo.list_active_for_user(user_id, datetime.now(timezone.utc))
        return [
            {
                "id": token.id,
                "created_at": token.created_at,
                "expires_at": token.expires_at,
                "ip_address": token.ip_address,
                "user_agent": token.user_agent,
            }
            for token in tokens
        ]
