"""
Pytest configuration and fixtures for CRM gateway tests.
"""
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta, timezone

from crm_gateway.models import RefreshToken, TokenBlacklist, User, UserRole
from crm_gateway.core.redis_client import RedisClient


@pytest_asyncio.fixture
async def mock_session():
    """Mock database session."""
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    return session


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    redis_mock = MagicMock(spec=RedisClient)
    redis_mock.client = AsyncMock()
    redis_mock.register_job = AsyncMock()
    redis_mock.get_job = AsyncMock(return_value=None)
    redis_mock.get_job_counts = AsyncMock()
    redis_mock.get_json = AsyncMock(return_value=None)
    redis_mock.set_json = AsyncMock()
    redis_mock.delete_patterns = AsyncMock(return_value=0)
    return redis_mock


@pytest.fixture
def sample_user():
    """Sample console user."""
    return User(
        id="0b6f7c1e-1d0a-4f3e-9a57-3c1d2e4f5a60",
        email="test@example.com",
        name="Test User",
        password_hash="$2b$12$hashed_password",
        is_active=True,
        role=UserRole.USER,
        failed_login_attempts=0,
    )


@pytest.fixture
def sample_admin():
    """Sample admin user."""
    return User(
        id="7d2c4b8a-5e61-4c0f-8b3a-9f1e2d3c4b5a",
        email="admin@example.com",
        name="Admin User",
        password_hash="$2b$12$hashed_password",
        is_active=True,
        role=UserRole.ADMIN,
        failed_login_attempts=0,
    )


@pytest.fixture
def sample_refresh_token(sample_user):
    """Stored refresh token that is still valid."""
    return RefreshToken(
        id="c3a1e5f2-2b4d-4e6f-8a1b-2c3d4e5f6a7b",
        token_hash="a" * 64,
        user_id=sample_user.id,
        expires_at=datetime.now(timezone.utc) + timedelta(days=7),
        is_revoked=False,
    )


@pytest.fixture
def sample_blacklist_entry():
    """Blacklist entry whose underlying access token has not expired yet."""
    return TokenBlacklist(
        id="e4b2f6a3-3c5e-4f7a-9b2c-3d4e5f6a7b8c",
        token_hash="b" * 64,
        user_id=None,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
        reason="logout",
        token_type="access",
    )
