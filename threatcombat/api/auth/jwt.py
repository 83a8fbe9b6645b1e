"""
JWT Token Handling

Create and verify JWT tokens for authentication.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from threatcombat.api.access.rbac import Role
from threatcombat.api.config import settings


def create_access_token(
    user_id: UUID,
    role: Role,
    chapter_id: Optional[UUID] = None,
) -> str:
    """
    Create a new access token.

    Args:
        user_id: User's UUID
        role: User's role at login time
        chapter_id: User's chapter, if any

    Returns:
        Encoded JWT access token
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)

    payload = {
        "sub": str(user_id),
        "id": str(user_id),
        "role": Role(role).value,
        "chapter": str(chapter_id) if chapter_id else None,
        "iat": now,
        "exp": expire,
        "type": "access",
    }

    return jwt.encode(
        payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )


def verify_token(token: str, token_type: str = "access") -> Optional[dict]:
    """
    Verify and decode a JWT token.

    Args:
        token: JWT token string
        token_type: Expected token type

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )

        # Verify token type
        if payload.get("type") != token_type:
            return None

        return payload

    except ExpiredSignatureError:
        return None
    except InvalidTokenError:
        return None


def get_token_expiry_seconds() -> int:
    """Get access token expiry in seconds."""
    return settings.ACCESS_TOKEN_EXPIRE_DAYS * 24 * 60 * 60
