"""
Pydantic v2 schemas with strict input validation and lenient output serialization.

Architecture:
  - *Fields classes: pure field definitions, no validators.  Shared by both
    input (Create/Update) and output (Response) schemas.
  - *Create / *Update classes: inherit from *Fields and ADD strict validators
    so bad data is rejected early with clear, actionable error messages.
  - *Response classes: inherit from *Fields directly (no validators) so any
    data already in the database serializes without crashing.

MAC addresses are normalized to upper-case colon form on the way in, so
the inventory never holds two spellings of the same device.
"""

from datetime import datetime
from typing import Optional
from ipaddress import ip_address as parse_ip
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import ValidationError as ServiceValidationError
from models import Reachability, Role
from auth.passwords import PASSWORD_MAX_BYTES, check_password_length
from services.magic_packet import canonical_mac


VALID_ICONS = frozenset({
    "desktop", "laptop", "server", "nas", "router", "tv", "console", "other",
})

USERNAME_RE = re.compile(r"^[a-zA-Z0-9._\-]+$")

# bcrypt only looks at the first 72 bytes
PASSWORD_MAX_LENGTH = PASSWORD_MAX_BYTES


# ── Reusable validators ──────────────────────────────────────────────


def _validate_ip(
    value: str,
    field_name: str = "IP address",
    allow_unspecified: bool = False,
) -> str:
    """Validate an IPv4 or IPv6 address string."""
    try:
        addr = parse_ip(value)
    except ValueError:
        raise ValueError(
            f"Invalid {field_name} '{value}'. "
            "Expected IPv4 (e.g. 192.168.1.10) or IPv6 (e.g. 2001:db8::1)"
        )
    if addr.is_unspecified and not allow_unspecified:
        raise ValueError(
            f"Unspecified {field_name} ({value}) is not allowed"
        )
    return str(addr)


def _validate_mac(value: str) -> str:
    """Validate a MAC address string and return its canonical form."""
    try:
        return canonical_mac(value)
    except ServiceValidationError as exc:
        raise ValueError(exc.message)


def validate_password_bytes(value: str) -> str:
    """Enforce the bcrypt byte limit on a new password."""
    try:
        return check_password_length(value)
    except ServiceValidationError as exc:
        raise ValueError(exc.message)


# ═══════════════════════════════════════════════════════════════════════
# DEVICE SCHEMAS
# ═══════════════════════════════════════════════════════════════════════

class DeviceFields(BaseModel):
    """Pure field definitions for devices.  No validators."""

    name: str = Field(..., min_length=1, max_length=255)
    mac_address: str
    ip_address: Optional[str] = None
    broadcast_addr: Optional[str] = None
    icon: Optional[str] = None
    agent_enabled: bool = False


class _DeviceValidators:
    """Mixin-style validators reused by DeviceCreate and DeviceUpdate."""

    @field_validator("mac_address")
    @classmethod
    def validate_mac(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_mac(v)

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        return _validate_ip(v, "IP address")

    @field_validator("broadcast_addr")
    @classmethod
    def validate_broadcast(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        return _validate_ip(v, "broadcast address")

    @field_validator("icon")
    @classmethod
    def validate_icon(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if v.lower() not in VALID_ICONS:
            raise ValueError(
                f"Invalid icon '{v}'. Must be one of: {', '.join(sorted(VALID_ICONS))}"
            )
        return v.lower()


class DeviceCreate(DeviceFields, _DeviceValidators):
    """Schema for creating a device with strict validation."""


class DeviceUpdate(BaseModel, _DeviceValidators):
    """Partial update; reachability fields are deliberately absent."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    mac_address: Optional[str] = None
    ip_address: Optional[str] = None
    broadcast_addr: Optional[str] = None
    icon: Optional[str] = None
    agent_enabled: Optional[bool] = None


class DeviceResponse(DeviceFields):
    """Device as returned by the API, including cached reachability."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    broadcast_addr: str
    is_online: bool
    reachability: Reachability
    last_seen_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class DeviceEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: int
    user_id: Optional[int] = None
    event_type: str
    description: Optional[str] = None
    created_at: datetime


class CommandResponse(BaseModel):
    message: str
    device_id: int
    event_type: str
    target: str


# ═══════════════════════════════════════════════════════════════════════
# USER SCHEMAS
# ═══════════════════════════════════════════════════════════════════════

class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: Role
    force_password_change: bool
    is_disabled: bool
    last_login_at: Optional[datetime] = None


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    role: Role = Role.USER

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not USERNAME_RE.match(v):
            raise ValueError(
                f"Invalid username '{v}'. "
                "Use only alphanumeric characters, hyphens, dots, and underscores"
            )
        return v


class CreateUserResponse(BaseModel):
    message: str
    user: UserResponse
    password: str


class RoleUpdateRequest(BaseModel):
    role: Role


class StatusUpdateRequest(BaseModel):
    is_disabled: bool


class PasswordResetResponse(BaseModel):
    message: str
    password: str
