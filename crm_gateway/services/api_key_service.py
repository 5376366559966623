import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from crm_gateway.core.exceptions import ConflictError, NotFoundError, UnauthorizedError
from crm_gateway.core.security import hash_token
from crm_gateway.models.api_key import ApiKey
from crm_gateway.models.user import User
from .base_service import BaseService

API_KEY_PREFIX = "sk_"


class ApiKeyService(BaseService):
    """Issues and validates the machine keys that gate the CRM proxy routes."""

    @staticmethod
    def new_key() -> str:
        return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"

    async def generate_api_key(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        permissions: Optional[List[str]] = None,
        environment: str = "development",
    ) -> Dict[str, Any]:
        """Create a key and return it in plain text; this is the only time it is visible."""
        existing = await self.api_key_repo.get_for_user_environment(user_id, environment)
        if existing is not None:
            if existing.is_active:
                raise ConflictError(f"An active API key already exists for the {environment} environment")
            # a revoked key still holds the (user, environment) slot
            await self.api_key_repo.delete(existing.id)

        plain_key = self.new_key()
        api_key = await self.api_key_repo.create({
            "key_hash": hash_token(plain_key),
            "key_prefix": plain_key[:12],
            "name": name,
            "description": description,
            "permissions": permissions if permissions is not None else ["read"],
            "environment": environment,
            "user_id": user_id,
        })
        await self.commit()
        self.logger.info("API key generated", user_id=user_id, api_key_id=api_key.id, environment=environment)
        return {**self.serialize(api_key), "key": plain_key}

    async def validate_api_key(self, key: str, environment: str) -> Dict[str, Any]:
        """Resolve an active key for ``environment`` to its owner, touching ``last_used_at``."""
        api_key: Optional[ApiKey] = await self.api_key_repo.get_by_hash(hash_token(key))
        if api_key is None or not api_key.is_active or api_key.environment != environment:
            raise UnauthorizedError(f"Invalid API key for {environment} environment")

        user: Optional[User] = await self.user_repo.get_by_id(api_key.user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError("User account is inactive")

        await self.api_key_repo.touch(api_key.id, datetime.now(timezone.utc))
        await self.commit()
        return {"user": user, "api_key": api_key}

    async def list_keys(self, user_id: str) -> List[Dict[str, Any]]:
        return [self.serialize(api_key) for api_key in await self.api_key_repo.list_for_user(user_id)]

    async def revoke(self, user_id: str, key_id: str) -> None:
        if not await self.api_key_repo.deactivate(key_id, user_id):
            raise NotFoundError("API key not found")
        await self.commit()
        self.logger.info("API key revoked", user_id=user_id, api_key_id=key_id)

    @staticmethod
    def serialize(api_key: ApiKey) -> Dict[str, Any]:
        return {
            "id": api_key.id,
            "name": api_key.name,
            "description": api_key.description,
            "key_prefix": api_key.key_prefix,
            "environment": api_key.environment,
            "permissions": api_key.permissions or [],
            "is_active": api_key.is_active,
            "last_used_at": api_key.last_used_at,
            "created_at": api_key.created_at,
        }
