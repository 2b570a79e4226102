"""JWT access token creation and validation using python-jose."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings
from models.user import Role

logger = logging.getLogger(__name__)


def create_access_token(
    user_id: int,
    username: str,
    role: Role,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        user_id: Database user ID (``sub`` claim).
        username: Login name, carried for display and audit.
        role: User role.
        expires_delta: Custom expiration (default from settings).

    Returns:
        Encoded JWT string.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRATION_MINUTES)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "username": username,
        "role": Role(role).value,
        "iat": now,
        "exp": now + expires_delta,
        "type": "access",
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT access token. Signature and expiry only; no
    database access.

    Raises:
        JWTError: If the token is invalid, expired, tampered with, or not an
            access token.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    return payload
