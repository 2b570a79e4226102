"""User model for authentication and authorization."""

import enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from database import Base
from utils.clock import utcnow


class Role(str, enum.Enum):
    """
    Access roles carried inside the access token claims.

    admin: manage users and the device inventory, plus everything a user can do
    user:  list devices, wake and shut them down, read device history
    """

    ADMIN = "admin"
    USER = "user"


class User(Base):
    """
    Application user.

    Security metadata (``failed_login_attempts``, ``is_disabled``,
    ``force_password_change``) is maintained as a side effect of
    authentication and by the admin user-management endpoints.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=Role.USER.value, index=True)

    # Security metadata
    force_password_change = Column(Boolean, default=False, nullable=False)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    is_disabled = Column(Boolean, default=False, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<User {self.username} role={self.role} disabled={self.is_disabled}>"
