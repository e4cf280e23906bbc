"""
Graceful Shutdown Manager

Tracks exchange operations that are mid-flight (an order request sent but its
result not yet persisted) so shutdown can wait for them. Anything not yet
started is safe to abandon: watchers rebuild from durable state on restart.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


class ShutdownInProgressError(RuntimeError):
    """Raised when a watcher tries to start an exchange operation during shutdown."""


class ShutdownManager:
    """
    Usage:
        async with shutdown_manager.order_in_flight("us12-sl"):
            result = await exchange.place_order(...)
            await store.update_user_signal(...)

        await shutdown_manager.prepare_shutdown(timeout=60)
    """

    def __init__(self):
        self._shutting_down = False
        self._in_flight: Counter = Counter()
        self._lock = asyncio.Lock()
        self._idle_event = asyncio.Event()
        self._shutdown_requested_at: Optional[datetime] = None

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def in_flight_count(self) -> int:
        return sum(self._in_flight.values())

    async def begin(self, label: str):
        async with self._lock:
            if self._shutting_down:
                raise ShutdownInProgressError(f"Cannot start {label} - shutdown in progress")
            self._in_flight[label] += 1
            logger.debug(f"{label} started - in-flight: {self.in_flight_count}")

    async def end(self, label: str):
        async with self._lock:
            if self._in_flight[label] > 0:
                self._in_flight[label] -= 1
            if self._in_flight[label] == 0:
                del self._in_flight[label]
            logger.debug(f"{label} finished - in-flight: {self.in_flight_count}")
            if self._shutting_down and self.in_flight_count == 0:
                self._idle_event.set()

    class OrderInFlight:
        """Async context manager around one exchange operation"""

        def __init__(self, manager: "ShutdownManager", label: str):
            self.manager = manager
            self.label = label

        async def __aenter__(self):
            await self.manager.begin(self.label)
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            await self.manager.end(self.label)
            return False

    def order_in_flight(self, label: str = "order") -> "OrderInFlight":
        return self.OrderInFlight(self, label)

    async def prepare_shutdown(self, timeout: float = 60.0) -> dict:
        """
        Refuse new exchange operations and wait for in-flight ones.

        Returns:
            dict with ready, in_flight_count, waited_seconds, message
        """
        self._shutting_down = True
        self._shutdown_requested_at = datetime.utcnow()
        self._idle_event.clear()

        logger.info(f"Shutdown requested - {self.in_flight_count} exchange operations in-flight")

        if self.in_flight_count == 0:
            return {
                "ready": True,
                "in_flight_count": 0,
                "waited_seconds": 0,
                "message": "No in-flight orders - ready for shutdown",
            }

        try:
            await asyncio.wait_for(self._idle_event.wait(), timeout=timeout)
            waited = (datetime.utcnow() - self._shutdown_requested_at).total_seconds()
            return {
                "ready": True,
                "in_flight_count": 0,
                "waited_seconds": waited,
                "message": f"All orders completed after {waited:.1f}s - ready for shutdown",
            }
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown timeout after {timeout}s - still in flight: {dict(self._in_flight)}"
            )
            return {
                "ready": False,
                "in_flight_count": self.in_flight_count,
                "waited_seconds": timeout,
                "message": f"Timeout: {self.in_flight_count} orders still in-flight after {timeout}s",
            }

    async def cancel_shutdown(self):
        self._shutting_down = False
        self._shutdown_requested_at = None
        self._idle_event.clear()
        logger.info("Shutdown cancelled")

    def get_status(self) -> dict:
        return {
            "shutting_down": self._shutting_down,
            "in_flight_count": self.in_flight_count,
            "in_flight": dict(self._in_flight),
            "shutdown_requested_at": self._shutdown_requested_at.isoformat() if self._shutdown_requested_at else None,
        }


# Global singleton instance
shutdown_manager = ShutdownManager()
