"""Centralized Pydantic schemas for API responses"""

from .signal import ActionResponse, SignalResponse, UserSignalResponse

__all__ = [
    "SignalResponse",
    "UserSignalResponse",
    "ActionResponse",
]
