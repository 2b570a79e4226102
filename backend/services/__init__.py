"""Services package for LanWake."""

from .magic_packet import (
    broadcast_magic_packet,
    build_magic_packet,
    canonical_mac,
    parse_mac_address,
)
from .prober import ProbeResult, probe_device, probe_host
from .shutdown_client import ShutdownClient
from .storage import DeviceSnapshot, NewDeviceEvent, Storage
from .commands import CommandResult, send_shutdown, send_wake
from .monitor import DeviceMonitor, MonitorRunResult, MonitorState

__all__ = [
    "broadcast_magic_packet",
    "build_magic_packet",
    "canonical_mac",
    "parse_mac_address",
    "ProbeResult",
    "probe_device",
    "probe_host",
    "ShutdownClient",
    "DeviceSnapshot",
    "NewDeviceEvent",
    "Storage",
    "CommandResult",
    "send_shutdown",
    "send_wake",
    "DeviceMonitor",
    "MonitorRunResult",
    "MonitorState",
]
