"""
Access and refresh token lifecycle.

Access tokens are stateless JWTs: validity is signature plus expiry, so
logging out does not revoke an access token already handed out; it simply
expires. Refresh tokens are opaque random strings persisted by SHA-256
hash only and rotated on every use. A presented token that is no longer on
file (already rotated, revoked or expired) always forces a fresh login.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError

from config import settings
from errors import AccountDisabled, Unauthenticated
from models.user import Role
from services.storage import RefreshTokenRecord, Storage, UserCredentials
from utils.audit import audit
from utils.clock import utcnow

from .jwt_service import create_access_token, verify_access_token
from .passwords import hash_password, verify_password

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 48


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    username: str
    role: Role
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime
    user: UserCredentials
    token_type: str = "Bearer"


def hash_refresh_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def refresh_token_lifetime(remember_me: bool) -> timedelta:
    if remember_me:
        return timedelta(days=settings.REFRESH_TOKEN_REMEMBER_ME_DAYS)
    return timedelta(days=settings.REFRESH_TOKEN_EXPIRATION_DAYS)


class TokenService:
    """Issues, verifies, rotates and revokes tokens on top of :class:`Storage`."""

    def __init__(self, storage: Storage):
        self.storage = storage

    async def authenticate(
        self, username: str, password: str, remember_me: bool = False
    ) -> TokenPair:
        """
        Check credentials and issue a new token pair.

        Raises:
            Unauthenticated: unknown user or wrong password.
            AccountDisabled: the account is disabled.
        """
        user = await self.storage.get_user_by_username(username)
        if user is None:
            # Burn comparable time so unknown usernames are not distinguishable
            verify_password(password, _DUMMY_HASH)
            audit.log_auth("LOGIN", username, None, "failure", "unknown user")
            raise Unauthenticated("Invalid username or password")

        if not verify_password(password, user.password_hash):
            await self.storage.record_login_failure(user.id)
            audit.log_auth("LOGIN", username, user.id, "failure", "bad password")
            raise Unauthenticated("Invalid username or password")

        if user.is_disabled:
            audit.log_auth("LOGIN", username, user.id, "failure", "account disabled")
            raise AccountDisabled("Account is disabled")

        now = utcnow()
        await self.storage.record_login_success(user.id, now)
        pair = await self._issue(user, remember_me)
        audit.log_auth("LOGIN", username, user.id, "success")
        return pair

    def verify_access_token(self, token: str) -> AccessClaims:
        """Stateless check of signature, expiry and token type."""
        try:
            payload = verify_access_token(token)
            return AccessClaims(
                user_id=int(payload["sub"]),
                username=payload.get("username", ""),
                role=Role(payload["role"]),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (JWTError, KeyError, ValueError) as exc:
            raise Unauthenticated("Invalid or expired token") from exc

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair, invalidating the old one.

        Raises:
            Unauthenticated: token unknown, expired, already rotated, or its
                owner is gone or disabled.
        """
        token_hash = hash_refresh_token(refresh_token)
        record = await self.storage.find_refresh_token_by_hash(token_hash)
        if record is None:
            logger.warning("Refresh attempted with an unknown or already-rotated token")
            audit.log_auth("TOKEN_REFRESH", "unknown", None, "failure", "unknown token")
            raise Unauthenticated("Invalid refresh token")

        if record.is_expired():
            await self.storage.delete_refresh_token(token_hash)
            audit.log_auth("TOKEN_REFRESH", "unknown", record.user_id, "failure", "expired")
            raise Unauthenticated("Refresh token expired")

        user = await self.storage.get_user_credentials(record.user_id)
        if user is None or user.is_disabled:
            await self.storage.delete_refresh_token(token_hash)
            audit.log_auth("TOKEN_REFRESH", "unknown", record.user_id, "failure", "user unavailable")
            raise Unauthenticated("Invalid refresh token")

        new_raw, new_record = self._new_refresh_record(user.id, record.remember_me)
        if not await self.storage.rotate_refresh_token(token_hash, new_record):
            # Lost a race with a concurrent exchange of the same token
            logger.warning(f"Concurrent reuse of a refresh token for user {user.id}")
            audit.log_auth("TOKEN_REFRESH", user.username, user.id, "failure", "reused")
            raise Unauthenticated("Invalid refresh token")

        audit.log_auth("TOKEN_REFRESH", user.username, user.id, "success")
        return self._pair(user, new_raw, new_record)

    async def logout(self, refresh_token: str) -> bool:
        """Delete the refresh token record. Outstanding access tokens stay valid until expiry."""
        removed = await self.storage.delete_refresh_token(hash_refresh_token(refresh_token))
        audit.log("LOGOUT", "user", "RefreshToken", "-", "success" if removed else "noop")
        return removed

    async def revoke_all(self, user_id: int) -> int:
        """Drop every refresh token a user holds (password change, disable, deletion)."""
        return await self.storage.delete_refresh_tokens_for_user(user_id)

    async def _issue(self, user: UserCredentials, remember_me: bool) -> TokenPair:
        raw, record = self._new_refresh_record(user.id, remember_me)
        await self.storage.insert_refresh_token(record)
        return self._pair(user, raw, record)

    def _new_refresh_record(self, user_id: int, remember_me: bool) -> tuple[str, RefreshTokenRecord]:
        raw = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        record = RefreshTokenRecord(
            token_hash=hash_refresh_token(raw),
            user_id=user_id,
            expires_at=utcnow() + refresh_token_lifetime(remember_me),
            remember_me=remember_me,
        )
        return raw, record

    def _pair(self, user: UserCredentials, raw: str, record: RefreshTokenRecord) -> TokenPair:
        return TokenPair(
            access_token=create_access_token(user.id, user.username, user.role),
            refresh_token=raw,
            expires_in=settings.ACCESS_TOKEN_EXPIRATION_MINUTES * 60,
            refresh_expires_at=record.expires_at,
            user=user,
        )


# Hash of a throwaway password; only used to equalize login timing
_DUMMY_HASH = hash_password(secrets.token_hex(16))
