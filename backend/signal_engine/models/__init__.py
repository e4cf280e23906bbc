"""
Database Models

All model classes are re-exported here:
    from signal_engine.models import Signal, UserSignal, ApiKey, User
"""

from signal_engine.database import Base  # noqa: F401
from signal_engine.models.auth import User
from signal_engine.models.trading import ApiKey, PaperOrder, Signal, UserSignal

__all__ = [
    "Base",
    "User",
    "ApiKey",
    "Signal",
    "UserSignal",
    "PaperOrder",
]
