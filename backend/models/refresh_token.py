"""Refresh token model. Only the SHA-256 hash of the raw token is stored."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base
from utils.clock import utcnow


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    token_hash = Column(String(64), primary_key=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Rotated tokens inherit the lifetime chosen at login
    remember_me = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    def __repr__(self):
        return f"<RefreshToken(user={self.user_id}, expires_at={self.expires_at})>"
