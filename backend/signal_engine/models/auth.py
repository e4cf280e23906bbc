"""Subscriber models: the users signals are fanned out to."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from signal_engine.database import Base


class User(Base):
    """
    A signal subscriber.

    Accounts are managed by the bot/dashboard surface; the engine only reads
    is_active and subscription_expires_at to decide fan-out eligibility.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_chat_id = Column(String, nullable=True, index=True)  # Target for per-user notifications
    username = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    subscription_expires_at = Column(DateTime, nullable=True)  # NULL = no expiry
    created_at = Column(DateTime, default=datetime.utcnow)

    api_keys = relationship("ApiKey", back_populates="user")

    def has_active_subscription(self, now: datetime = None) -> bool:
        if not self.is_active:
            return False
        if self.subscription_expires_at is None:
            return True
        return self.subscription_expires_at > (now or datetime.utcnow())
