from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import client_ip, get_current_user
from crm_gateway.core.config import settings
from crm_gateway.core.database import get_async_session
from crm_gateway.core.exceptions import UnauthorizedError
from crm_gateway.models.user import User
from crm_gateway.schemas.auth import AuthResponse, LoginRequest, RefreshRequest, RegisterRequest, TokenPair
from crm_gateway.services.auth_service import AuthService
from crm_gateway.services.token_service import TokenService

router = APIRouter()


def set_auth_cookies(response: Response, tokens: TokenPair):
    """Access and refresh tokens travel as httpOnly cookies only."""
    secure = settings.ENVIRONMENT == "production"
    response.set_cookie(
        settings.AUTH_COOKIE_NAME,
        tokens.access_token,
        max_age=tokens.access_token_expires_in,
        httponly=True,
        secure=secure,
        samesite="strict",
    )
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        tokens.refresh_token,
        max_age=tokens.refresh_token_expires_in,
        httponly=True,
        secure=secure,
        samesite="strict",
        path="/auth",
    )


def clear_auth_cookies(response: Response):
    secure = settings.ENVIRONMENT == "production"
    response.delete_cookie(settings.AUTH_COOKIE_NAME, httponly=True, secure=secure, samesite="strict")
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, path="/auth", httponly=True, secure=secure, samesite="strict")


@router.post("/login", response_model=AuthResponse)
async def login(
    login_data: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_async_session)
):
    """
    Authenticate a console user.

    - **email**: User email address
    - **password**: User password
    """
    result = await AuthService(session).login(
        login_data.email, login_data.password, client_ip(request), request.headers.get("user-agent")
    )
    tokens = result["tokens"]
    set_auth_cookies(response, tokens)
    return AuthResponse(
        user=result["user"],
        access_token_expires_in=tokens.access_token_expires_in,
        refresh_token_expires_in=tokens.refresh_token_expires_in,
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    register_data: RegisterRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_async_session)
):
    """
    Register a new account and sign it in.

    - **email**: must be unique
    - **name**: display name
    - **password**: checked against the configured minimum length
    - **company**: optional
    """
    result = await AuthService(session).register(
        register_data.email,
        register_data.name,
        register_data.password,
        register_data.company,
        client_ip(request),
        request.headers.get("user-agent"),
    )
    tokens = result["tokens"]
    set_auth_cookies(response, tokens)
    return AuthResponse(
        user=result["user"],
        access_token_expires_in=tokens.access_token_expires_in,
        refresh_token_expires_in=tokens.refresh_token_expires_in,
    )


@router.post("/refresh")
async def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    session: AsyncSession = Depends(get_async_session)
):
    """Exchange the refresh token (cookie first, then body) for a new pair."""
    token = request.cookies.get(settings.REFRESH_COOKIE_NAME) or (body.refresh_token if body else None)
    if not token:
        raise UnauthorizedError("Refresh token required")

    tokens = await AuthService(session).refresh(token, client_ip(request), request.headers.get("user-agent"))
    set_auth_cookies(response, tokens)
    return {
        "success": True,
        "access_token_expires_in": tokens.access_token_expires_in,
        "refresh_token_expires_in": tokens.refresh_token_expires_in,
    }


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Revoke the current access and refresh tokens and clear the cookies."""
    await AuthService(session).logout(
        getattr(request.state, "access_token", None),
        request.cookies.get(settings.REFRESH_COOKIE_NAME),
        current_user.id,
        client_ip(request),
        request.headers.get("user-agent"),
    )
    clear_auth_cookies(response)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    return current_user.public_dict()


@router.get("/sessions")
async def list_sessions(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Unexpired, unrevoked refresh tokens of the current user."""
    return await TokenService(session).get_user_refresh_tokens(current_user.id)


@router.post("/logout-all")
async def logout_all(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session)
):
    """Revoke every refresh token of the current user and blacklist this access token."""
    revoked = await TokenService(session).revoke_all_user_tokens(current_user.id)
    await AuthService(session).logout(
        getattr(request.state, "access_token", None),
        None,
        current_user.id,
        client_ip(request),
        request.headers.get("user-agent"),
    )
    clear_auth_cookies(response)
    return {"success": True, "message": f"Logged out from {revoked} sessions"}
