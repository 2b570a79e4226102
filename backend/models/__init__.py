from .user import User, Role
from .device import Device, Reachability
from .device_event import DeviceEvent, EventKind
from .refresh_token import RefreshToken

__all__ = [
    "User",
    "Role",
    "Device",
    "Reachability",
    "DeviceEvent",
    "EventKind",
    "RefreshToken",
]
