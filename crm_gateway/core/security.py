import hashlib
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from jose import JWTError, jwt
from passlib.context import CryptContext

from crm_gateway.core.config import settings
from crm_gateway.core.exceptions import TokenValidationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)

DEFAULT_EXPIRY_SECONDS = 15 * 60
_EXPIRY_RE = re.compile(r"^(\d+)([smhd])$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


def hash_token(token: str) -> str:
    """sha256 hex digest; only digests of tokens and API keys are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    return secrets.token_hex(64)


def parse_expiry(value: Optional[str]) -> int:
    """
    Convert an expiry string such as ``"30s"``, ``"15m"``, ``"24h"`` or ``"7d"`` to seconds.

    Anything else falls back to 15 minutes.
    """
    match = _EXPIRY_RE.match((value or "").strip())
    if not match:
        logger.warning(f"Invalid expiry format: {value!r}, defaulting to 15 minutes")
        return DEFAULT_EXPIRY_SECONDS
    amount, unit = int(match.group(1)), match.group(2).lower()
    return amount * _UNIT_SECONDS[unit]


class AuthService:
    """Password hashing and JWT helpers."""

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash."""
        try:
            return pwd_context.verify(plain_password, hashed_password)
        except ValueError:
            return False

    @staticmethod
    def get_password_hash(password: str) -> str:
        """Generate password hash."""
        return pwd_context.hash(password)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_in_seconds: int) -> str:
        """Create a signed JWT access token."""
        to_encode = data.copy()
        to_encode.update({"exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds)})
        return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        """Verify a JWT access token and return its payload."""
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError as e:
            raise TokenValidationError("Could not validate credentials") from e
        if payload.get("type") != "access":
            raise TokenValidationError("Could not validate credentials")
        return payload

    @staticmethod
    def peek_claims(token: str) -> Dict[str, Any]:
        """Claims of a token without verifying it; used to read ``exp`` when blacklisting."""
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            return {}
