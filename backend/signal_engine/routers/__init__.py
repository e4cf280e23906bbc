"""
API Routers

Read-mostly surface over signals and user signals. The only writes are
requests (cancel, close) that the watchers act on.
"""

from signal_engine.routers import signals_router
from signal_engine.routers import system_router
from signal_engine.routers import user_signals_router

__all__ = [
    "signals_router",
    "system_router",
    "user_signals_router",
]
