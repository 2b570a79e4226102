"""
Tests for the admin user-management endpoints.

Covers:
- Admin-only access (user role gets 403)
- Create with generated password and forced change
- Role and status updates, password reset, deletion
- Self-protection rules
- Token revocation on disable/reset
"""

import pytest
from httpx import AsyncClient

from models import Role

from conftest import auth_headers, create_user


class TestUserAccess:
    """Role-based access to /api/users."""

    @pytest.mark.asyncio
    async def test_regular_user_forbidden(self, async_client: AsyncClient, regular_user):
        response = await async_client.get("/api/users", headers=auth_headers(regular_user))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_anonymous_unauthorized(self, async_client: AsyncClient):
        response = await async_client.get("/api/users")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_admin_lists_users(self, async_client: AsyncClient, admin_user, regular_user):
        response = await async_client.get("/api/users", headers=auth_headers(admin_user))

        assert response.status_code == 200
        usernames = [u["username"] for u in response.json()]
        assert usernames == ["admin", "bob"]


class TestUserManagement:
    """Create, update, reset and delete."""

    @pytest.mark.asyncio
    async def test_create_user_returns_generated_password(self, async_client: AsyncClient, admin_user):
        response = await async_client.post(
            "/api/users", json={"username": "carol"}, headers=auth_headers(admin_user)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["username"] == "carol"
        assert data["user"]["role"] == "user"
        assert data["user"]["force_password_change"] is True
        assert len(data["password"]) == 8
        assert data["password"].isalnum()

        login = await async_client.post(
            "/api/auth/login", json={"username": "carol", "password": data["password"]}
        )
        assert login.status_code == 200

    @pytest.mark.asyncio
    async def test_create_duplicate_user(self, async_client: AsyncClient, admin_user, regular_user):
        response = await async_client.post(
            "/api/users", json={"username": "bob"}, headers=auth_headers(admin_user)
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_create_invalid_username(self, async_client: AsyncClient, admin_user):
        response = await async_client.post(
            "/api/users", json={"username": "bad name!"}, headers=auth_headers(admin_user)
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_role(self, async_client: AsyncClient, admin_user, regular_user):
        response = await async_client.patch(
            f"/api/users/{regular_user.id}/role",
            json={"role": "admin"},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert response.json()["role"] == "admin"

    @pytest.mark.asyncio
    async def test_invalid_role_rejected(self, async_client: AsyncClient, admin_user, regular_user):
        response = await async_client.patch(
            f"/api/users/{regular_user.id}/role",
            json={"role": "superuser"},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_cannot_change_own_role(self, async_client: AsyncClient, admin_user):
        response = await async_client.patch(
            f"/api/users/{admin_user.id}/role",
            json={"role": "user"},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_disable_revokes_refresh_tokens(self, async_client: AsyncClient, session_factory, admin_user):
        await create_user(session_factory, "dave", "dave-password")
        pair = (
            await async_client.post(
                "/api/auth/login", json={"username": "dave", "password": "dave-password"}
            )
        ).json()

        response = await async_client.patch(
            f"/api/users/{pair['user']['id']}/status",
            json={"is_disabled": True},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert response.json()["is_disabled"] is True

        refresh = await async_client.post(
            "/api/auth/refresh", json={"refresh_token": pair["refresh_token"]}
        )
        assert refresh.status_code == 401
        me = await async_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {pair['access_token']}"}
        )
        assert me.status_code == 403

    @pytest.mark.asyncio
    async def test_reset_password(self, async_client: AsyncClient, session_factory, admin_user):
        user = await create_user(session_factory, "erin", "old-password")

        response = await async_client.post(
            f"/api/users/{user.id}/reset-password", headers=auth_headers(admin_user)
        )
        assert response.status_code == 200
        new_password = response.json()["password"]

        old_login = await async_client.post(
            "/api/auth/login", json={"username": "erin", "password": "old-password"}
        )
        assert old_login.status_code == 401
        new_login = await async_client.post(
            "/api/auth/login", json={"username": "erin", "password": new_password}
        )
        assert new_login.status_code == 200
        assert new_login.json()["user"]["force_password_change"] is True

    @pytest.mark.asyncio
    async def test_delete_user(self, async_client: AsyncClient, admin_user, regular_user):
        response = await async_client.delete(
            f"/api/users/{regular_user.id}", headers=auth_headers(admin_user)
        )
        assert response.status_code == 204

        listing = await async_client.get("/api/users", headers=auth_headers(admin_user))
        assert [u["username"] for u in listing.json()] == ["admin"]

    @pytest.mark.asyncio
    async def test_cannot_delete_self(self, async_client: AsyncClient, admin_user):
        response = await async_client.delete(
            f"/api/users/{admin_user.id}", headers=auth_headers(admin_user)
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_user_404(self, async_client: AsyncClient, admin_user):
        response = await async_client.delete("/api/users/9999", headers=auth_headers(admin_user))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_role_check_uses_database_role(self, async_client: AsyncClient, session_factory):
        """A stale admin claim does not grant admin access after demotion."""
        user = await create_user(session_factory, "frank", "frank-password", Role.USER)
        user.role = Role.ADMIN.value  # token minted with the admin claim

        response = await async_client.get("/api/users", headers=auth_headers(user))
        assert response.status_code == 403
