"""
Password hashing, access tokens and one-time codes.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from loguru import logger

from openforum.core.config import settings

_password_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Hash a password with argon2."""
    return _password_hasher.hash(password)


def verify_password(password: str, hashed_password: str | None) -> bool:
    """Check a password against its argon2 hash."""
    if not hashed_password:
        return False
    try:
        return _password_hasher.verify(hashed_password, password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(
    user_id: int,
    role: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Sign a bearer token for a user.

    Args:
        user_id: Subject of the token
        role: Role at issue time (informational, the database is authoritative)
        expires_delta: Token lifetime (default from settings)

    Returns:
        Encoded JWT
    """
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "role": role or "user",
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a bearer token.

    Returns:
        Token payload or None if invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid access token: {e}")
        return None


def generate_otp(length: int | None = None) -> str:
    """Generate a numeric one-time code."""
    length = length or settings.otp_length
    return "".join(secrets.choice("0123456789") for _ in range(length))


def generate_secret(num_bytes: int = 32) -> str:
    """Generate a random hex secret."""
    return secrets.token_hex(num_bytes)
