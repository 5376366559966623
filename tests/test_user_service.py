"""
Tests for account management and API keys.
"""
import pytest
import pytest_asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from crm_gateway.core.exceptions import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from crm_gateway.core.security import hash_token
from crm_gateway.models.user import UserRole
from crm_gateway.services.api_key_service import ApiKeyService
from crm_gateway.services.user_service import UserService


def api_key_row(**overrides):
    row = {
        "id": "key-1",
        "name": "Default API Key",
        "description": None,
        "key_prefix": "sk_0123456789",
        "environment": "development",
        "permissions": ["read"],
        "is_active": True,
        "last_used_at": None,
        "created_at": datetime.now(timezone.utc),
        "user_id": "user-1",
    }
    row.update(overrides)
    return SimpleNamespace(**row)


class TestUserService:
    """Test cases for UserService."""

    @pytest_asyncio.fixture
    async def user_service(self, mock_session):
        service = UserService(mock_session)
        service.user_repo = AsyncMock()
        return service

    @pytest.fixture
    def settings_defaults(self):
        with patch("crm_gateway.services.user_service.SettingsService") as settings_cls:
            settings_cls.return_value.get_setting = AsyncMock(side_effect=lambda category, key, default: default)
            yield settings_cls

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, user_service, sample_user, settings_defaults):
        user_service.user_repo.get_by_email.return_value = sample_user

        with pytest.raises(ConflictError):
            await user_service.create("Test@Example.com", "Test", "long-enough-password")

        user_service.user_repo.get_by_email.assert_called_once_with("test@example.com")
        user_service.user_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, user_service, settings_defaults):
        user_service.user_repo.get_by_email.return_value = None

        with pytest.raises(ValidationError) as exc_info:
            await user_service.create("new@example.com", "New", "short")

        assert exc_info.value.message == "Password must be at least 8 characters long"

    @pytest.mark.asyncio
    async def test_user_cannot_change_roles(self, user_service, sample_user):
        with pytest.raises(ForbiddenError):
            await user_service.update_user_role("other", UserRole.ADMIN, sample_user)

    @pytest.mark.asyncio
    async def test_admin_may_only_assign_user(self, user_service, sample_admin):
        with pytest.raises(ForbiddenError) as exc_info:
            await user_service.update_user_role("other", UserRole.ADMIN, sample_admin)

        assert exc_info.value.message == "ADMIN can only assign USER role"
        user_service.user_repo.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_super_admin_cannot_self_demote(self, user_service, sample_admin):
        sample_admin.role = UserRole.SUPER_ADMIN
        user_service.user_repo.get_by_id.return_value = sample_admin

        with pytest.raises(ForbiddenError):
            await user_service.update_user_role(sample_admin.id, UserRole.USER, sample_admin)

    @pytest.mark.asyncio
    async def test_user_can_only_view_self(self, user_service, sample_user):
        with pytest.raises(ForbiddenError):
            await user_service.get_user_by_id("someone-else", sample_user)

    @pytest.mark.asyncio
    async def test_profile_not_found(self, user_service):
        user_service.user_repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await user_service.get_profile("missing")

    def test_available_roles(self, sample_user, sample_admin):
        assert UserService.available_roles(sample_user) == []
        assert UserService.available_roles(sample_admin) == ["USER"]
        sample_admin.role = UserRole.SUPER_ADMIN
        assert UserService.available_roles(sample_admin) == ["USER", "ADMIN", "SUPER_ADMIN"]


class TestApiKeyService:
    """Test cases for ApiKeyService."""

    @pytest_asyncio.fixture
    async def api_key_service(self, mock_session):
        service = ApiKeyService(mock_session)
        service.api_key_repo = AsyncMock()
        service.user_repo = AsyncMock()
        return service

    @pytest.mark.asyncio
    async def test_generate_returns_plain_key_once(self, api_key_service):
        api_key_service.api_key_repo.get_for_user_environment.return_value = None
        api_key_service.api_key_repo.create.side_effect = lambda data: api_key_row(
            key_prefix=data["key_prefix"], environment=data["environment"]
        )

        result = await api_key_service.generate_api_key("user-1", "Default API Key", environment="staging")

        assert result["key"].startswith("sk_")
        assert len(result["key"]) == 3 + 64
        stored = api_key_service.api_key_repo.create.call_args[0][0]
        assert stored["key_hash"] == hash_token(result["key"])
        assert result["key"] not in stored.values()
        assert result["environment"] == "staging"

    @pytest.mark.asyncio
    async def test_active_key_blocks_new_one(self, api_key_service):
        api_key_service.api_key_repo.get_for_user_environment.return_value = api_key_row()

        with pytest.raises(ConflictError):
            await api_key_service.generate_api_key("user-1", "Second key")

        api_key_service.api_key_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_revoked_key_is_replaced(self, api_key_service):
        api_key_service.api_key_repo.get_for_user_environment.return_value = api_key_row(is_active=False)
        api_key_service.api_key_repo.create.return_value = api_key_row(id="key-2")

        await api_key_service.generate_api_key("user-1", "Replacement")

        api_key_service.api_key_repo.delete.assert_called_once_with("key-1")
        api_key_service.api_key_repo.create.assert_called_once()

    @pytest.mark.asyncio
    async def test_validate_rejects_other_environment(self, api_key_service):
        api_key_service.api_key_repo.get_by_hash.return_value = api_key_row(environment="development")

        with pytest.raises(UnauthorizedError) as exc_info:
            await api_key_service.validate_api_key("sk_test", "production")

        assert exc_info.value.message == "Invalid API key for production environment"
        api_key_service.api_key_repo.touch.assert_not_called()

    @pytest.mark.asyncio
    async def test_validate_touches_last_used(self, api_key_service, sample_user):
        api_key_service.api_key_repo.get_by_hash.return_value = api_key_row()
        api_key_service.user_repo.get_by_id.return_value = sample_user

        result = await api_key_service.validate_api_key("sk_test", "development")

        assert result["user"] is sample_user
        api_key_service.api_key_repo.touch.assert_called_once()

    @pytest.mark.asyncio
    async def test_revoke_unknown_key(self, api_key_service):
        api_key_service.api_key_repo.deactivate.return_value = False

        with pytest.raises(NotFoundError):
            await api_key_service.revoke("user-1", "missing")
