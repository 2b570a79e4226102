"""
Wake and shutdown command dispatch.

Commands run synchronously for the requesting user: validate, send, then
append a ``wake``/``shutdown`` event. They never touch the device's cached
reachability; only the next monitor cycle establishes the new state.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from config import settings
from errors import ValidationError
from models import EventKind
from utils.audit import audit

from .magic_packet import broadcast_magic_packet, canonical_mac
from .shutdown_client import ShutdownClient
from .storage import DeviceSnapshot, NewDeviceEvent, Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    device_id: int
    kind: EventKind
    target: str
    event_id: int

    @property
    def message(self) -> str:
        if self.kind is EventKind.WAKE:
            return "Wake signal sent"
        return "Shutdown signal sent"


async def send_wake(
    storage: Storage,
    device: DeviceSnapshot,
    actor_id: Optional[int] = None,
    port: Optional[int] = None,
    broadcaster: Optional[Callable[[str, str, int], None]] = None,
) -> CommandResult:
    """
    Broadcast a magic packet for ``device`` and record a ``wake`` event.

    Raises:
        ValidationError: malformed MAC or broadcast address (nothing is sent).
        NetworkError: the datagram could not be sent.
    """
    mac = canonical_mac(device.mac_address)
    address = device.broadcast_addr or settings.DEFAULT_BROADCAST_ADDRESS
    port = port or settings.WOL_PORT
    if broadcaster is None:
        broadcaster = broadcast_magic_packet

    # Socket send is blocking; keep it off the event loop
    await asyncio.to_thread(broadcaster, mac, address, port)
    target = f"{address}:{port}"
    logger.info(f"Wake signal for '{device.name}' ({device.mac_address}) sent to {target}")

    event_id = await storage.append_device_event(
        NewDeviceEvent(
            device_id=device.id,
            kind=EventKind.WAKE,
            description=f"Magic packet sent to {target}",
            user_id=actor_id,
        )
    )
    audit.log_device_command("WAKE", device.id, device.name, target)
    return CommandResult(device.id, EventKind.WAKE, target, event_id)


async def send_shutdown(
    storage: Storage,
    device: DeviceSnapshot,
    secret: str,
    actor_id: Optional[int] = None,
    client: Optional[ShutdownClient] = None,
) -> CommandResult:
    """
    Ask the device's companion agent to shut the host down and record a
    ``shutdown`` event.

    Raises:
        ValidationError: no IP, agent not enabled, or no secret configured.
        AgentError: the agent call failed.
    """
    if not device.ip_address:
        raise ValidationError("Device has no IP address")
    if not device.agent_enabled:
        raise ValidationError("Shutdown agent is not enabled for this device")

    if client is None:
        client = ShutdownClient(
            port=settings.AGENT_PORT, timeout=settings.AGENT_TIMEOUT_SECONDS
        )
    await client.shutdown(device.ip_address, secret)
    target = client.endpoint_for(device.ip_address)

    event_id = await storage.append_device_event(
        NewDeviceEvent(
            device_id=device.id,
            kind=EventKind.SHUTDOWN,
            description=f"Shutdown requested via agent at {target}",
            user_id=actor_id,
        )
    )
    audit.log_device_command("SHUTDOWN", device.id, device.name, target)
    return CommandResult(device.id, EventKind.SHUTDOWN, target, event_id)
