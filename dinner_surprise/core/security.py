"""Security utilities for verifying Supabase access tokens."""

import uuid
from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from dinner_surprise.core.config import settings


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a Supabase access token.

    Supabase signs access tokens with the project JWT secret and sets the
    audience to ``authenticated`` for signed-in users.

    Args:
        token: JWT access token from the Authorization header

    Returns:
        Decoded token claims or None if invalid
    """
    if not settings.SUPABASE_JWT_SECRET:
        return None
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError:
        return None


def get_user_id_from_token(token: str) -> uuid.UUID | None:
    """
    Extract the authenticated user id (``sub`` claim) from a token.

    Returns:
        User UUID or None if the token is invalid or carries no usable subject
    """
    payload = decode_token(token)
    if not payload:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    try:
        return uuid.UUID(str(subject))
    except ValueError:
        return None


def create_access_token(user_id: uuid.UUID, expires_delta: timedelta | None = None) -> str:
    """
    Create a Supabase-compatible access token.

    Used by tests and local tooling; production tokens are issued by Supabase.

    Args:
        user_id: Subject of the token
        expires_delta: Token lifetime (defaults to one hour)

    Returns:
        Encoded JWT token
    """
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=1))
    to_encode = {
        "sub": str(user_id),
        "aud": settings.SUPABASE_JWT_AUDIENCE,
        "role": "authenticated",
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SUPABASE_JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
