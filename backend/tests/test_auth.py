"""
Test suite for the authentication endpoints.

Covers:
- Login, refresh rotation and logout over HTTP
- /me and bearer token handling
- Forced password change flow
- Change password revokes outstanding refresh tokens
- bcrypt 72-byte password limit
- Structured 422 validation errors and request IDs
"""

import pytest
from httpx import AsyncClient

import main
from auth.passwords import hash_password, verify_password
from config import settings
from errors import ValidationError
from models import Role

from conftest import auth_headers, create_user


async def login(client: AsyncClient, username: str, password: str, remember_me: bool = False):
    return await client.post(
        "/api/auth/login",
        json={"username": username, "password": password, "remember_me": remember_me},
    )


# ──────────────────────────────────────────────────────────────────────────────
# LOGIN / REFRESH / LOGOUT
# ──────────────────────────────────────────────────────────────────────────────


class TestLoginEndpoints:
    """Tests for login, refresh and logout."""

    @pytest.mark.asyncio
    async def test_login_success(self, async_client: AsyncClient, session_factory):
        """Valid credentials return a token pair and the user profile."""
        await create_user(session_factory, "testadmin", "test_password_123", Role.ADMIN)

        response = await login(async_client, "testadmin", "test_password_123")

        assert response.status_code == 200
        data = response.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] > 0
        assert data["user"]["username"] == "testadmin"
        assert data["user"]["role"] == "admin"
        assert "password_hash" not in data["user"]

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, async_client: AsyncClient, session_factory):
        await create_user(session_factory, "alice", "correct-horse")

        response = await login(async_client, "alice", "battery-staple")

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid username or password"

    @pytest.mark.asyncio
    async def test_login_unknown_user_same_message(self, async_client: AsyncClient):
        response = await login(async_client, "ghost", "whatever")

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid username or password"

    @pytest.mark.asyncio
    async def test_login_disabled_account(self, async_client: AsyncClient, session_factory):
        await create_user(session_factory, "alice", "correct-horse", is_disabled=True)

        response = await login(async_client, "alice", "correct-horse")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_refresh_rotates_token(self, async_client: AsyncClient, session_factory):
        """A refresh token works once; replaying it is rejected."""
        await create_user(session_factory)
        first = (await login(async_client, "alice", "correct-horse")).json()

        response = await async_client.post(
            "/api/auth/refresh", json={"refresh_token": first["refresh_token"]}
        )
        assert response.status_code == 200
        second = response.json()
        assert second["refresh_token"] != first["refresh_token"]

        replay = await async_client.post(
            "/api/auth/refresh", json={"refresh_token": first["refresh_token"]}
        )
        assert replay.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_revokes_refresh_token(self, async_client: AsyncClient, session_factory):
        await create_user(session_factory)
        pair = (await login(async_client, "alice", "correct-horse")).json()

        response = await async_client.post(
            "/api/auth/logout", json={"refresh_token": pair["refresh_token"]}
        )
        assert response.status_code == 200

        refresh = await async_client.post(
            "/api/auth/refresh", json={"refresh_token": pair["refresh_token"]}
        )
        assert refresh.status_code == 401

        # Access token is stateless and keeps working until expiry
        me = await async_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {pair['access_token']}"}
        )
        assert me.status_code == 200

    @pytest.mark.asyncio
    async def test_logout_twice_is_ok(self, async_client: AsyncClient, session_factory):
        await create_user(session_factory)
        pair = (await login(async_client, "alice", "correct-horse")).json()

        for _ in range(2):
            response = await async_client.post(
                "/api/auth/logout", json={"refresh_token": pair["refresh_token"]}
            )
            assert response.status_code == 200


# ──────────────────────────────────────────────────────────────────────────────
# BEARER TOKEN HANDLING
# ──────────────────────────────────────────────────────────────────────────────


class TestCurrentUser:
    """Tests for /api/auth/me and token validation."""

    @pytest.mark.asyncio
    async def test_me_without_token(self, async_client: AsyncClient):
        response = await async_client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_me_with_garbage_token(self, async_client: AsyncClient):
        response = await async_client.get(
            "/api/auth/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_me_returns_profile(self, async_client: AsyncClient, regular_user):
        response = await async_client.get("/api/auth/me", headers=auth_headers(regular_user))

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == regular_user.id
        assert data["role"] == "user"
        assert data["force_password_change"] is False

    @pytest.mark.asyncio
    async def test_disabled_user_token_rejected(self, async_client: AsyncClient, session_factory):
        user = await create_user(session_factory, is_disabled=True)

        response = await async_client.get("/api/auth/me", headers=auth_headers(user))
        assert response.status_code == 403


# ──────────────────────────────────────────────────────────────────────────────
# PASSWORD CHANGE
# ──────────────────────────────────────────────────────────────────────────────


class TestPasswordChange:
    """Forced and voluntary password changes."""

    @pytest.mark.asyncio
    async def test_forced_change_blocks_other_endpoints(self, async_client: AsyncClient, session_factory):
        """Until the password is changed, only /api/auth endpoints are usable."""
        await create_user(session_factory, "newbie", "temp1234", force_password_change=True)

        response = await login(async_client, "newbie", "temp1234")
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["force_password_change"] is True
        headers = {"Authorization": f"Bearer {data['access_token']}"}

        assert (await async_client.get("/api/auth/me", headers=headers)).status_code == 200
        blocked = await async_client.get("/api/devices", headers=headers)
        assert blocked.status_code == 403
        assert blocked.json()["detail"] == "Password change required"

        changed = await async_client.post(
            "/api/auth/change-password",
            json={"old_password": "temp1234", "new_password": "a-much-better-one"},
            headers=headers,
        )
        assert changed.status_code == 200
        assert changed.json()["user"]["force_password_change"] is False

        allowed = await async_client.get("/api/devices", headers=headers)
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_change_password_revokes_refresh_tokens(self, async_client: AsyncClient, session_factory):
        await create_user(session_factory)
        old = (await login(async_client, "alice", "correct-horse")).json()

        response = await async_client.post(
            "/api/auth/change-password",
            json={"old_password": "correct-horse", "new_password": "battery-staple"},
            headers={"Authorization": f"Bearer {old['access_token']}"},
        )
        assert response.status_code == 200
        new = response.json()

        stale = await async_client.post(
            "/api/auth/refresh", json={"refresh_token": old["refresh_token"]}
        )
        assert stale.status_code == 401
        fresh = await async_client.post(
            "/api/auth/refresh", json={"refresh_token": new["refresh_token"]}
        )
        assert fresh.status_code == 200

        assert (await login(async_client, "alice", "correct-horse")).status_code == 401
        assert (await login(async_client, "alice", "battery-staple")).status_code == 200

    @pytest.mark.asyncio
    async def test_change_password_wrong_old(self, async_client: AsyncClient, regular_user):
        response = await async_client.post(
            "/api/auth/change-password",
            json={"old_password": "nope", "new_password": "something-long"},
            headers=auth_headers(regular_user),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_new_password_over_72_bytes_is_422(self, async_client: AsyncClient, regular_user):
        """40 two-byte characters pass the length check but exceed bcrypt's byte limit."""
        response = await async_client.post(
            "/api/auth/change-password",
            json={"old_password": "bob-password", "new_password": "é" * 40},
            headers=auth_headers(regular_user),
        )

        assert response.status_code == 422
        errors = response.json()["errors"]
        assert errors[0]["field"] == "new_password"
        assert "72 bytes" in errors[0]["message"]

    @pytest.mark.asyncio
    async def test_new_password_at_72_bytes_accepted(self, async_client: AsyncClient, regular_user):
        response = await async_client.post(
            "/api/auth/change-password",
            json={"old_password": "bob-password", "new_password": "é" * 36},
            headers=auth_headers(regular_user),
        )
        assert response.status_code == 200


# ──────────────────────────────────────────────────────────────────────────────
# PASSWORD HASHING
# ──────────────────────────────────────────────────────────────────────────────


class TestPasswordHashing:
    """bcrypt byte limit."""

    def test_hash_rejects_over_72_bytes(self):
        with pytest.raises(ValidationError):
            hash_password("é" * 37)

    def test_hash_accepts_72_bytes(self):
        hashed = hash_password("a" * 72)
        assert verify_password("a" * 72, hashed)

    @pytest.mark.asyncio
    async def test_bootstrap_admin_skips_oversized_password(self, monkeypatch):
        """An unhashable LOCAL_ADMIN_PASSWORD is logged and never reaches the database."""

        def no_session():
            raise AssertionError("database must not be touched")

        monkeypatch.setattr(settings, "LOCAL_ADMIN_USERNAME", "admin")
        monkeypatch.setattr(settings, "LOCAL_ADMIN_PASSWORD", "ü" * 50)
        monkeypatch.setattr(main, "AsyncSessionLocal", no_session)

        await main.bootstrap_admin()


# ──────────────────────────────────────────────────────────────────────────────
# REQUEST HANDLING
# ──────────────────────────────────────────────────────────────────────────────


class TestRequestHandling:
    """Validation error shape and request IDs."""

    @pytest.mark.asyncio
    async def test_validation_error_is_structured(self, async_client: AsyncClient):
        response = await async_client.post("/api/auth/login", json={"username": "alice"})

        assert response.status_code == 422
        data = response.json()
        assert data["detail"] == "Validation failed"
        fields = [e["field"] for e in data["errors"]]
        assert "password" in fields

    @pytest.mark.asyncio
    async def test_request_id_header(self, async_client: AsyncClient):
        response = await async_client.get("/api")
        assert response.status_code == 200
        assert response.headers.get("X-Request-ID")
