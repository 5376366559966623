"""
Tests for CSRF protection and the authentication dependency.
"""
import pytest
from unittest.mock import AsyncMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from crm_gateway.core.auth import client_ip, extract_access_token, get_current_user
from crm_gateway.core.config import settings
from crm_gateway.core.exceptions import TokenValidationError, UnauthorizedError
from crm_gateway.middleware.csrf import CSRFMiddleware


def build_app():
    app = FastAPI()
    app.add_middleware(CSRFMiddleware, exempt_paths=["/auth/login"])

    @app.get("/items")
    async def list_items():
        return {"items": []}

    @app.post("/items")
    async def create_item():
        return {"created": True}

    @app.post("/auth/login")
    async def login():
        return {"ok": True}

    return app


class TestCSRFMiddleware:
    """Double-submit cookie checks."""

    def test_safe_request_issues_token(self):
        client = TestClient(build_app())

        response = client.get("/items")

        assert response.status_code == 200
        token = response.cookies.get(settings.CSRF_COOKIE_NAME)
        assert token
        assert response.headers[settings.CSRF_HEADER_NAME] == token

    def test_existing_cookie_is_kept(self):
        client = TestClient(build_app())
        client.cookies.set(settings.CSRF_COOKIE_NAME, "abc123")

        response = client.get("/items")

        assert response.headers[settings.CSRF_HEADER_NAME] == "abc123"

    def test_missing_header_is_rejected(self):
        client = TestClient(build_app())
        client.cookies.set(settings.CSRF_COOKIE_NAME, "abc123")

        response = client.post("/items")

        assert response.status_code == 403
        assert response.json()["error"] == "CSRF token missing. Please include X-CSRF-Token header."

    def test_mismatched_header_is_rejected(self):
        client = TestClient(build_app())
        client.cookies.set(settings.CSRF_COOKIE_NAME, "abc123")

        response = client.post("/items", headers={settings.CSRF_HEADER_NAME: "other"})

        assert response.status_code == 403
        assert response.json()["error"] == "Invalid CSRF token."

    def test_matching_header_is_accepted(self):
        client = TestClient(build_app())
        token = client.get("/items").cookies.get(settings.CSRF_COOKIE_NAME)

        response = client.post("/items", headers={settings.CSRF_HEADER_NAME: token})

        assert response.status_code == 200
        assert response.json() == {"created": True}

    def test_exempt_path_skips_check(self):
        client = TestClient(build_app())

        response = client.post("/auth/login")

        assert response.status_code == 200


def make_request(cookies: str = "", client=("10.0.0.7", 5000)):
    headers = [(b"cookie", cookies.encode())] if cookies else []
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/auth/me",
        "headers": headers,
        "query_string": b"",
        "client": client,
    })


class TestAuthDependency:
    """Test cases for resolving the console user."""

    def test_cookie_wins_over_bearer(self):
        request = make_request(f"{settings.AUTH_COOKIE_NAME}=from-cookie")
        credentials = type("Credentials", (), {"scheme": "Bearer", "credentials": "from-header"})()

        assert extract_access_token(request, credentials) == "from-cookie"
        assert extract_access_token(make_request(), credentials) == "from-header"
        assert extract_access_token(make_request(), None) is None

    def test_client_ip(self):
        assert client_ip(make_request()) == "10.0.0.7"
        assert client_ip(make_request(client=None)) == "unknown"

    @pytest.mark.asyncio
    async def test_missing_token(self, mock_session):
        with pytest.raises(UnauthorizedError) as exc_info:
            await get_current_user(make_request(), None, mock_session)

        assert exc_info.value.message == "Authentication required"

    @pytest.mark.asyncio
    async def test_blacklisted_token_is_rejected(self, mock_session):
        request = make_request(f"{settings.AUTH_COOKIE_NAME}=revoked-token")

        with patch("crm_gateway.core.auth.TokenService") as token_service_cls:
            token_service_cls.return_value.is_token_blacklisted = AsyncMock(return_value=True)
            with pytest.raises(TokenValidationError) as exc_info:
                await get_current_user(request, None, mock_session)

        assert exc_info.value.message == "Token has been revoked"
        token_service_cls.return_value.is_token_blacklisted.assert_called_once_with("revoked-token")
