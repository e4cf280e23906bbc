"""
System API routes

- Health check with watcher registry and shutdown state
"""

import logging
from typing import Optional

from fastapi import APIRouter

from signal_engine.services.shutdown_manager import shutdown_manager
from signal_engine.trading_engine.watcher_registry import WatcherRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])

# Set from main.py on startup
_watcher_registry: Optional[WatcherRegistry] = None


def set_watcher_registry(registry: Optional[WatcherRegistry]):
    global _watcher_registry
    _watcher_registry = registry


@router.get("/api/health")
async def health():
    watchers = _watcher_registry.get_status() if _watcher_registry else None
    shutdown = shutdown_manager.get_status()
    return {
        "status": "shutting_down" if shutdown["shutting_down"] else "ok",
        "watchers": watchers,
        "shutdown": shutdown,
    }
