from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models import Device, User
from auth.dependencies import (
    get_shutdown_client,
    get_storage,
    require_admin,
    require_any_authenticated,
)
from schemas import (
    CommandResponse,
    DeviceCreate,
    DeviceEventResponse,
    DeviceResponse,
    DeviceUpdate,
)
from services.commands import CommandResult, send_shutdown, send_wake
from services.shutdown_client import ShutdownClient
from services.storage import DeviceSnapshot, Storage
from utils.audit import audit

router = APIRouter(prefix="/api/devices", tags=["devices"])


async def _get_device_or_404(db: AsyncSession, device_id: int) -> Device:
    device = await db.get(Device, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


async def _get_snapshot_or_404(storage: Storage, device_id: int) -> DeviceSnapshot:
    device = await storage.get_device(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


async def _ensure_mac_free(db: AsyncSession, mac_address: str, exclude_id: Optional[int] = None) -> None:
    query = select(Device.id).where(Device.mac_address == mac_address)
    if exclude_id is not None:
        query = query.where(Device.id != exclude_id)
    result = await db.execute(query)
    if result.first():
        raise HTTPException(
            status_code=409,
            detail=f"Device with MAC {mac_address} already exists",
        )


def _command_response(result: CommandResult) -> CommandResponse:
    return CommandResponse(
        message=result.message,
        device_id=result.device_id,
        event_type=result.kind.value,
        target=result.target,
    )


@router.get("", response_model=list[DeviceResponse])
async def list_devices(
    user: User = Depends(require_any_authenticated),
    db: AsyncSession = Depends(get_db),
):
    """List all devices with their cached reachability."""
    result = await db.execute(select(Device).order_by(Device.name, Device.id))
    return [DeviceResponse.model_validate(d) for d in result.scalars().all()]


@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(
    device_id: int,
    user: User = Depends(require_any_authenticated),
    db: AsyncSession = Depends(get_db),
):
    device = await _get_device_or_404(db, device_id)
    return DeviceResponse.model_validate(device)


@router.post("", response_model=DeviceResponse, status_code=201)
async def create_device(
    device: DeviceCreate,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new device.

    The device starts offline with no ``last_seen_at``; the monitor fills
    those in on its next cycle.
    """
    await _ensure_mac_free(db, device.mac_address)

    db_device = Device(
        name=device.name,
        mac_address=device.mac_address,
        ip_address=device.ip_address,
        broadcast_addr=device.broadcast_addr or settings.DEFAULT_BROADCAST_ADDRESS,
        icon=device.icon,
        agent_enabled=device.agent_enabled,
        created_by=user.id,
    )

    db.add(db_device)
    await db.commit()
    await db.refresh(db_device)

    audit.log_device_crud("CREATE", db_device.id, db_device.name)
    return DeviceResponse.model_validate(db_device)


@router.put("/{device_id}", response_model=DeviceResponse)
async def update_device(
    device_id: int,
    device_update: DeviceUpdate,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a device by ID.

    Only fields present in the body change. Reachability (``is_online``,
    ``last_seen_at``) is owned by the monitor and cannot be set here.
    """
    db_device = await _get_device_or_404(db, device_id)

    update_data = device_update.model_dump(exclude_unset=True)
    if update_data.get("mac_address"):
        await _ensure_mac_free(db, update_data["mac_address"], exclude_id=device_id)
    if "broadcast_addr" in update_data and not update_data["broadcast_addr"]:
        update_data["broadcast_addr"] = settings.DEFAULT_BROADCAST_ADDRESS
    # Explicit nulls on required columns mean "leave unchanged"
    for field in ("name", "mac_address", "agent_enabled"):
        if update_data.get(field) is None:
            update_data.pop(field, None)

    changes = {}
    for field, value in update_data.items():
        if getattr(db_device, field) != value:
            changes[field] = value
        setattr(db_device, field, value)

    await db.commit()
    await db.refresh(db_device)

    audit.log_device_crud("UPDATE", device_id, db_device.name, changes=changes)
    return DeviceResponse.model_validate(db_device)


@router.delete("/{device_id}", status_code=204)
async def delete_device(
    device_id: int,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a device and its event history."""
    db_device = await _get_device_or_404(db, device_id)

    name = db_device.name
    await db.delete(db_device)
    await db.commit()
    audit.log_device_crud("DELETE", device_id, name)


@router.post("/{device_id}/wake", response_model=CommandResponse)
async def wake_device(
    device_id: int,
    user: User = Depends(require_any_authenticated),
    storage: Storage = Depends(get_storage),
):
    """
    Broadcast a Wake-on-LAN magic packet to the device.

    Success means the packet left this host, not that the device woke up.
    """
    device = await _get_snapshot_or_404(storage, device_id)
    result = await send_wake(storage, device, actor_id=user.id)
    return _command_response(result)


@router.post("/{device_id}/shutdown", response_model=CommandResponse)
async def shutdown_device(
    device_id: int,
    user: User = Depends(require_any_authenticated),
    storage: Storage = Depends(get_storage),
    client: ShutdownClient = Depends(get_shutdown_client),
):
    """Ask the device's companion agent to power the host off."""
    device = await _get_snapshot_or_404(storage, device_id)
    result = await send_shutdown(
        storage,
        device,
        settings.AGENT_SHARED_SECRET,
        actor_id=user.id,
        client=client,
    )
    return _command_response(result)


@router.get("/{device_id}/events", response_model=list[DeviceEventResponse])
async def list_device_events(
    device_id: int,
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(require_any_authenticated),
    storage: Storage = Depends(get_storage),
):
    """Most recent events first."""
    await _get_snapshot_or_404(storage, device_id)
    events = await storage.list_device_events(device_id, limit=limit)
    return [DeviceEventResponse.model_validate(e) for e in events]
