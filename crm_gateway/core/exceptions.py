from typing import Any, Optional


class AppError(Exception):
    """Base application error mapped to an HTTP status by the exception handlers."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class TokenValidationError(UnauthorizedError):
    """Raised when a token cannot be verified, including storage failures during the check."""


class RefreshTokenError(UnauthorizedError):
    pass
