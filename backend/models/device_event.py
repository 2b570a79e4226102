import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Index
from sqlalchemy.orm import relationship

from database import Base
from utils.clock import utcnow


class EventKind(str, enum.Enum):
    WAKE = "wake"
    SHUTDOWN = "shutdown"
    PROBE_ONLINE = "probe_online"
    PROBE_OFFLINE = "probe_offline"


class DeviceEvent(Base):
    """
    Append-only activity log entry for a device.

    ``user_id`` is NULL for system events such as the monitor detecting a
    device going offline. Rows disappear only with their device.
    """

    __tablename__ = "device_events"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(
        Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    event_type = Column(String(32), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    device = relationship("Device", back_populates="events")

    __table_args__ = (
        Index("idx_events_device", "device_id"),
    )

    def __repr__(self):
        return f"<DeviceEvent(id={self.id}, device={self.device_id}, type={self.event_type})>"
