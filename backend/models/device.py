import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Index
from sqlalchemy.orm import relationship

from database import Base
from utils.clock import utcnow


class Reachability(str, enum.Enum):
    """Reachability as reported to callers. ``unknown`` means no IP is configured."""

    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class Device(Base):
    """SQLAlchemy model for a wakeable LAN device."""

    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    # Addressing
    mac_address = Column(String(17), nullable=False)  # canonical AA:BB:CC:DD:EE:FF
    ip_address = Column(String(45), nullable=True)  # optional, required for probing
    broadcast_addr = Column(String(45), nullable=False, default="255.255.255.255")

    # UI hint, e.g. "desktop", "server"
    icon = Column(String(50), nullable=True)

    # Cached reachability, written only by the monitor's reconciliation step
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen_at = Column(DateTime, nullable=True)

    # Companion shutdown agent installed on the host
    agent_enabled = Column(Boolean, default=False, nullable=False)

    created_by = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)

    events = relationship(
        "DeviceEvent",
        back_populates="device",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DeviceEvent.created_at.desc()",
    )

    __table_args__ = (
        Index("idx_devices_mac", "mac_address"),
    )

    @property
    def reachability(self) -> Reachability:
        if not self.ip_address:
            return Reachability.UNKNOWN
        return Reachability.ONLINE if self.is_online else Reachability.OFFLINE

    def __repr__(self):
        return f"<Device(id={self.id}, name={self.name}, mac={self.mac_address})>"
