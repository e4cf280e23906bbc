"""
Engine Utilities Package

Common utility functions and helpers.
"""

from .backoff import backoff_delay, retry_with_backoff

__all__ = [
    "backoff_delay",
    "retry_with_backoff",
]
