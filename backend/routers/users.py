"""
User management endpoints (admin only).

    GET    /api/users                        list users
    POST   /api/users                        create a user with a generated password
    PATCH  /api/users/{id}/role              change role
    PATCH  /api/users/{id}/status            enable / disable
    POST   /api/users/{id}/reset-password    issue a new generated password
    DELETE /api/users/{id}                   delete a user

Disabling a user, resetting their password or deleting them revokes every
refresh token they hold. Admins cannot change their own role, disable or
delete themselves.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import User
from auth.dependencies import get_token_service, require_admin
from auth.passwords import generate_password, hash_password
from auth.token_service import TokenService
from schemas import (
    CreateUserResponse,
    PasswordResetResponse,
    RoleUpdateRequest,
    StatusUpdateRequest,
    UserCreate,
    UserResponse,
)
from utils.audit import audit

router = APIRouter(prefix="/api/users", tags=["users"])


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _reject_self(current_user: User, user_id: int, action: str) -> None:
    if current_user.id == user_id:
        raise HTTPException(status_code=400, detail=f"You cannot {action} your own account")


@router.get("", response_model=list[UserResponse])
async def list_users(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """List all users."""
    result = await db.execute(select(User).order_by(User.username))
    return [UserResponse.model_validate(u) for u in result.scalars().all()]


@router.post("", response_model=CreateUserResponse, status_code=201)
async def create_user(
    body: UserCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a user with a random password.

    The password is returned once, in this response. The new user must
    change it on first login.
    """
    result = await db.execute(select(User).where(User.username == body.username))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=409,
            detail=f"User '{body.username}' already exists",
        )

    password = generate_password()
    user = User(
        username=body.username,
        password_hash=hash_password(password),
        role=body.role.value,
        force_password_change=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    audit.log_user_change("CREATE", user.id, user.username, {"role": user.role})
    return CreateUserResponse(
        message="User created",
        user=UserResponse.model_validate(user),
        password=password,
    )


@router.patch("/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: int,
    body: RoleUpdateRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Change a user's role. Takes effect on the user's next access token."""
    _reject_self(current_user, user_id, "change the role of")
    target_user = await _get_user_or_404(db, user_id)

    old_role = target_user.role
    target_user.role = body.role.value
    await db.commit()
    await db.refresh(target_user)

    audit.log_user_change(
        "UPDATE_ROLE",
        target_user.id,
        target_user.username,
        {"old_role": old_role, "new_role": body.role.value},
    )
    return UserResponse.model_validate(target_user)


@router.patch("/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: int,
    body: StatusUpdateRequest,
    current_user: User = Depends(require_admin),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncSession = Depends(get_db),
):
    """Enable or disable a user. Disabling revokes their refresh tokens."""
    _reject_self(current_user, user_id, "disable")
    target_user = await _get_user_or_404(db, user_id)

    target_user.is_disabled = body.is_disabled
    if not body.is_disabled:
        target_user.failed_login_attempts = 0
    await db.commit()
    await db.refresh(target_user)

    revoked = 0
    if body.is_disabled:
        revoked = await tokens.revoke_all(target_user.id)

    audit.log_user_change(
        "UPDATE_STATUS",
        target_user.id,
        target_user.username,
        {"is_disabled": body.is_disabled, "revoked_tokens": revoked},
    )
    return UserResponse.model_validate(target_user)


@router.post("/{user_id}/reset-password", response_model=PasswordResetResponse)
async def reset_password(
    user_id: int,
    current_user: User = Depends(require_admin),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncSession = Depends(get_db),
):
    """Replace a user's password with a generated one and force a change on next login."""
    target_user = await _get_user_or_404(db, user_id)

    password = generate_password()
    target_user.password_hash = hash_password(password)
    target_user.force_password_change = True
    target_user.failed_login_attempts = 0
    await db.commit()

    revoked = await tokens.revoke_all(target_user.id)
    audit.log_user_change(
        "RESET_PASSWORD", target_user.id, target_user.username, {"revoked_tokens": revoked}
    )
    return PasswordResetResponse(message="Password reset", password=password)


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a user. Their refresh tokens go with them; devices they created are kept."""
    _reject_self(current_user, user_id, "delete")
    target_user = await _get_user_or_404(db, user_id)

    username = target_user.username
    await db.delete(target_user)
    await db.commit()

    audit.log_user_change("DELETE", user_id, username)
