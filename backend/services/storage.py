"""
Storage operations consumed by the monitor, command and token services.

Each method opens its own short-lived session from the injected factory and
returns plain dataclass projections, never live ORM objects, so callers can
hold results across awaits without touching a closed session. Concurrent
writers rely on SQLite's per-statement atomicity; there is no application
lock. SQLAlchemy failures surface as :class:`errors.StorageError`.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from errors import StorageError
from models import Device, DeviceEvent, EventKind, Reachability, RefreshToken, Role, User
from utils.clock import utcnow

logger = logging.getLogger(__name__)


# ── Projections ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DeviceSnapshot:
    id: int
    name: str
    mac_address: str
    ip_address: Optional[str]
    broadcast_addr: str
    is_online: bool
    last_seen_at: Optional[datetime]
    agent_enabled: bool

    @property
    def reachability(self) -> Reachability:
        if not self.ip_address:
            return Reachability.UNKNOWN
        return Reachability.ONLINE if self.is_online else Reachability.OFFLINE

    @classmethod
    def from_model(cls, device: Device) -> "DeviceSnapshot":
        return cls(
            id=device.id,
            name=device.name,
            mac_address=device.mac_address,
            ip_address=device.ip_address,
            broadcast_addr=device.broadcast_addr,
            is_online=bool(device.is_online),
            last_seen_at=device.last_seen_at,
            agent_enabled=bool(device.agent_enabled),
        )


@dataclass(frozen=True)
class NewDeviceEvent:
    device_id: int
    kind: EventKind
    description: Optional[str] = None
    user_id: Optional[int] = None


@dataclass(frozen=True)
class RefreshTokenRecord:
    token_hash: str
    user_id: int
    expires_at: datetime
    remember_me: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())


@dataclass(frozen=True)
class UserCredentials:
    id: int
    username: str
    password_hash: str
    role: Role
    is_disabled: bool
    force_password_change: bool
    failed_login_attempts: int
    last_login_at: Optional[datetime]

    @classmethod
    def from_model(cls, user: User) -> "UserCredentials":
        return cls(
            id=user.id,
            username=user.username,
            password_hash=user.password_hash,
            role=Role(user.role),
            is_disabled=bool(user.is_disabled),
            force_password_change=bool(user.force_password_change),
            failed_login_attempts=user.failed_login_attempts or 0,
            last_login_at=user.last_login_at,
        )


# ── Storage ────────────────────────────────────────────────────────────


class Storage:
    """Async storage facade over a SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(f"Storage operation failed: {exc}")
                raise StorageError(str(exc)) from exc

    # Devices

    async def list_devices(self) -> list[DeviceSnapshot]:
        async with self._session() as session:
            result = await session.execute(select(Device).order_by(Device.id))
            return [DeviceSnapshot.from_model(d) for d in result.scalars().all()]

    async def list_probe_targets(self) -> list[DeviceSnapshot]:
        """Devices with a configured IP address, the only ones the monitor probes."""
        async with self._session() as session:
            result = await session.execute(
                select(Device)
                .where(Device.ip_address.isnot(None), Device.ip_address != "")
                .order_by(Device.id)
            )
            return [DeviceSnapshot.from_model(d) for d in result.scalars().all()]

    async def get_device(self, device_id: int) -> Optional[DeviceSnapshot]:
        async with self._session() as session:
            device = await session.get(Device, device_id)
            return DeviceSnapshot.from_model(device) if device else None

    async def update_device_reachability(
        self,
        device_id: int,
        is_online: bool,
        last_seen: Optional[datetime],
        event: Optional[NewDeviceEvent] = None,
    ) -> bool:
        """
        Write a probe outcome for one device, plus its transition event if any.

        The row update and the event insert commit together. ``last_seen``
        of ``None`` leaves the stored timestamp untouched. Returns False if
        the device no longer exists.
        """
        values = {"is_online": is_online}
        if last_seen is not None:
            values["last_seen_at"] = last_seen

        async with self._session() as session:
            result = await session.execute(
                update(Device).where(Device.id == device_id).values(**values)
            )
            if result.rowcount == 0:
                await session.rollback()
                return False
            if event is not None:
                session.add(_event_row(event))
            await session.commit()
            return True

    async def append_device_event(self, event: NewDeviceEvent) -> int:
        async with self._session() as session:
            row = _event_row(event)
            session.add(row)
            await session.commit()
            return row.id

    async def list_device_events(self, device_id: int, limit: int = 50) -> list[DeviceEvent]:
        async with self._session() as session:
            result = await session.execute(
                select(DeviceEvent)
                .where(DeviceEvent.device_id == device_id)
                .order_by(DeviceEvent.created_at.desc(), DeviceEvent.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # Refresh tokens

    async def find_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        async with self._session() as session:
            row = await session.get(RefreshToken, token_hash)
            return _token_record(row) if row else None

    async def delete_refresh_token(self, token_hash: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(RefreshToken).where(RefreshToken.token_hash == token_hash)
            )
            await session.commit()
            return result.rowcount > 0

    async def insert_refresh_token(self, record: RefreshTokenRecord) -> None:
        async with self._session() as session:
            session.add(_token_row(record))
            await session.commit()

    async def rotate_refresh_token(
        self, old_hash: str, new_record: RefreshTokenRecord
    ) -> bool:
        """
        Atomically replace ``old_hash`` with ``new_record``.

        The delete must remove exactly one unexpired row; otherwise nothing
        is inserted and False is returned. Two concurrent rotations of the
        same token therefore cannot both succeed.
        """
        async with self._session() as session:
            result = await session.execute(
                delete(RefreshToken).where(
                    RefreshToken.token_hash == old_hash,
                    RefreshToken.expires_at > utcnow(),
                )
            )
            if result.rowcount != 1:
                await session.rollback()
                return False
            session.add(_token_row(new_record))
            await session.commit()
            return True

    async def delete_refresh_tokens_for_user(self, user_id: int) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(RefreshToken).where(RefreshToken.user_id == user_id)
            )
            await session.commit()
            return result.rowcount

    # Users

    async def get_user_credentials(self, user_id: int) -> Optional[UserCredentials]:
        async with self._session() as session:
            user = await session.get(User, user_id)
            return UserCredentials.from_model(user) if user else None

    async def get_user_by_username(self, username: str) -> Optional[UserCredentials]:
        async with self._session() as session:
            result = await session.execute(select(User).where(User.username == username))
            user = result.scalar_one_or_none()
            return UserCredentials.from_model(user) if user else None

    async def record_login_failure(self, user_id: int) -> None:
        async with self._session() as session:
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(failed_login_attempts=User.failed_login_attempts + 1)
            )
            await session.commit()

    async def record_login_success(self, user_id: int, at: datetime) -> None:
        async with self._session() as session:
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(failed_login_attempts=0, last_login_at=at)
            )
            await session.commit()


def _event_row(event: NewDeviceEvent) -> DeviceEvent:
    return DeviceEvent(
        device_id=event.device_id,
        user_id=event.user_id,
        event_type=event.kind.value,
        description=event.description,
        created_at=utcnow(),
    )


def _token_row(record: RefreshTokenRecord) -> RefreshToken:
    return RefreshToken(
        token_hash=record.token_hash,
        user_id=record.user_id,
        remember_me=record.remember_me,
        expires_at=record.expires_at,
    )


def _token_record(row: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=row.expires_at,
        remember_me=bool(row.remember_me),
    )
