"""
Pytest configuration and fixtures for LanWake tests.

Provides:
- Async SQLite database per test (file-backed under tmp_path so concurrent
  sessions see each other's commits), with foreign keys enforced
- Storage bound to that database
- FastAPI app with dependency overrides
- AsyncClient for testing async endpoints
- Helpers to seed users and devices and to mint access tokens
"""

from typing import Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

import models  # noqa: F401  registers tables on Base.metadata
from auth.dependencies import get_storage
from auth.jwt_service import create_access_token
from auth.passwords import hash_password
from database import Base, enable_sqlite_foreign_keys, get_db
from main import app
from models import Device, Role, User
from services.storage import Storage


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Fresh database for each test.

    Yields:
        async_sessionmaker bound to the test database.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/test.db",
        echo=False,
        future=True,
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def storage(session_factory):
    return Storage(session_factory)


@pytest_asyncio.fixture
async def async_client(session_factory, storage):
    """
    AsyncClient pointing to the FastAPI app with the test database.

    Yields:
        httpx.AsyncClient: Async HTTP client for making requests to the app.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Seeding helpers ────────────────────────────────────────────────────


async def create_user(
    session_factory,
    username: str = "alice",
    password: str = "correct-horse",
    role: Role = Role.USER,
    **fields,
) -> User:
    async with session_factory() as db:
        user = User(
            username=username,
            password_hash=hash_password(password),
            role=role.value,
            **fields,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


async def create_device(
    session_factory,
    name: str = "nas",
    mac_address: str = "AA:BB:CC:DD:EE:FF",
    ip_address: Optional[str] = "192.168.1.10",
    broadcast_addr: str = "192.168.1.255",
    **fields,
) -> Device:
    async with session_factory() as db:
        device = Device(
            name=name,
            mac_address=mac_address,
            ip_address=ip_address,
            broadcast_addr=broadcast_addr,
            **fields,
        )
        db.add(device)
        await db.commit()
        await db.refresh(device)
        return device


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.username, Role(user.role))
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin_user(session_factory) -> User:
    return await create_user(session_factory, "admin", "admin-password", Role.ADMIN)


@pytest_asyncio.fixture
async def regular_user(session_factory) -> User:
    return await create_user(session_factory, "bob", "bob-password", Role.USER)
