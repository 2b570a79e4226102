"""
Authentication endpoints.

Public endpoints:
    POST /api/auth/login               username/password login, returns a token pair
    POST /api/auth/refresh             exchange a refresh token for a new pair
    POST /api/auth/logout              revoke a refresh token

Protected endpoints:
    GET  /api/auth/me                  current user info
    POST /api/auth/change-password     change own password, clears a forced change
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import AccountDisabled, AuthError
from models import User
from auth.dependencies import get_current_user, get_token_service
from auth.passwords import hash_password, verify_password
from auth.token_service import TokenPair, TokenService
from schemas import PASSWORD_MAX_LENGTH, UserResponse, validate_password_bytes
from utils.audit import audit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


# ── Schemas ────────────────────────────────────────────────────────────


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LENGTH)
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return validate_password_bytes(v)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserResponse


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
        user=UserResponse.model_validate(pair.user),
    )


def _http_error(exc: AuthError) -> HTTPException:
    if isinstance(exc, AccountDisabled):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=exc.message,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ── Public endpoints ───────────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    tokens: TokenService = Depends(get_token_service),
):
    """
    Authenticate with username/password.

    ``remember_me`` selects the long refresh-token lifetime. A user flagged
    for a forced password change still gets tokens, but only the
    ``/api/auth`` endpoints accept them until the password is changed.
    """
    try:
        pair = await tokens.authenticate(
            request.username, request.password, remember_me=request.remember_me
        )
    except AuthError as exc:
        raise _http_error(exc)
    return _token_response(pair)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: RefreshRequest,
    tokens: TokenService = Depends(get_token_service),
):
    """Rotate a refresh token. The presented token is invalid afterwards."""
    try:
        pair = await tokens.refresh(request.refresh_token)
    except AuthError as exc:
        raise _http_error(exc)
    return _token_response(pair)


@router.post("/logout")
async def logout(
    request: LogoutRequest,
    tokens: TokenService = Depends(get_token_service),
):
    """
    Revoke the given refresh token.

    Access tokens are stateless and stay valid until they expire; the
    client should discard its copy. Logging out twice is harmless.
    """
    if request.refresh_token:
        await tokens.logout(request.refresh_token)
    return {"status": "ok", "message": "Logged out"}


# ── Protected endpoints ────────────────────────────────────────────────


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)):
    """Get the authenticated user's profile."""
    return UserResponse.model_validate(user)


@router.post("/change-password", response_model=TokenResponse)
async def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Change the caller's password.

    Clears ``force_password_change``, revokes every refresh token the user
    holds, and returns a fresh token pair for the current session.
    """
    if not verify_password(request.old_password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )
    if request.old_password == request.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="New password must differ from the current password",
        )

    user.password_hash = hash_password(request.new_password)
    user.force_password_change = False
    await db.commit()

    revoked = await tokens.revoke_all(user.id)
    audit.log_user_change(
        "CHANGE_PASSWORD", user.id, user.username, {"revoked_tokens": revoked}
    )
    logger.info(f"User '{user.username}' changed password, {revoked} refresh tokens revoked")

    try:
        pair = await tokens.authenticate(user.username, request.new_password)
    except AuthError as exc:
        raise _http_error(exc)
    return _token_response(pair)
