"""
FastAPI dependencies for authentication and role-based access control.

Usage in routers::

    from auth.dependencies import require_admin, require_any_authenticated

    @router.delete("/{device_id}")
    async def delete_device(user: User = Depends(require_admin)):
        ...

    @router.post("/{device_id}/wake")
    async def wake_device(user: User = Depends(require_any_authenticated)):
        ...

Role checks are explicit: each endpoint names the roles it accepts. Users
whose password must be changed can only reach endpoints that depend on
:func:`get_current_user` directly (``/api/auth/*``).
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import AsyncSessionLocal, get_db
from errors import Unauthenticated
from models.user import Role, User
from services.shutdown_client import ShutdownClient
from services.storage import Storage
from utils.audit import audit

from .token_service import TokenService

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def get_storage() -> Storage:
    """Storage bound to the application's session factory."""
    return Storage(AsyncSessionLocal)


def get_token_service(storage: Storage = Depends(get_storage)) -> TokenService:
    return TokenService(storage)


def get_shutdown_client() -> ShutdownClient:
    return ShutdownClient(
        port=settings.AGENT_PORT, timeout=settings.AGENT_TIMEOUT_SECONDS
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the JWT from the ``Authorization: Bearer <token>`` header.

    Returns the authenticated :class:`User`.

    Raises:
        HTTPException 401 if the token is missing or invalid or the user no
        longer exists; 403 if the account is disabled.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = tokens.verify_access_token(credentials.credentials)
    except Unauthenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await db.get(User, claims.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.is_disabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )

    audit.set_actor(f"user:{user.username}")
    return user


def require_role(*allowed_roles: Role):
    """
    Dependency factory for role-based access control.

    Returns a FastAPI dependency that validates the authenticated user
    holds one of ``allowed_roles`` and has no pending forced password change.
    """

    async def _check_role(user: User = Depends(get_current_user)) -> User:
        if user.force_password_change:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Password change required",
            )
        if Role(user.role) not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"Insufficient permissions. Your role '{user.role}' "
                    f"does not have access. Required: "
                    f"{', '.join(r.value for r in allowed_roles)}"
                ),
            )
        return user

    return _check_role


require_admin = require_role(Role.ADMIN)
require_any_authenticated = require_role(Role.ADMIN, Role.USER)
