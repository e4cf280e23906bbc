"""
Watcher Registry

Owns every watcher task, keyed by ("signal", id) / ("user_signal", id).
Starting a watcher for a key that already has a live task is a no-op, which
is what guarantees at most one watcher per row no matter how often the
dispatcher or the resumption manager ask for one.
"""

import asyncio
import logging
from typing import Callable, Dict, Tuple

from signal_engine.constants import WATCHER_SIGNAL, WATCHER_USER_SIGNAL
from signal_engine.trading_engine.context import EngineContext
from signal_engine.trading_engine.position_watcher import PositionWatcher
from signal_engine.trading_engine.signal_watcher import SignalWatcher

logger = logging.getLogger(__name__)

WatcherKey = Tuple[str, int]


class WatcherRegistry:
    def __init__(
        self,
        ctx: EngineContext,
        signal_watcher_factory: Callable = SignalWatcher,
        position_watcher_factory: Callable = PositionWatcher,
    ):
        self.ctx = ctx
        self.signal_watcher_factory = signal_watcher_factory
        self.position_watcher_factory = position_watcher_factory
        self._tasks: Dict[WatcherKey, asyncio.Task] = {}

    def is_running(self, kind: str, row_id: int) -> bool:
        task = self._tasks.get((kind, row_id))
        return task is not None and not task.done()

    def start_signal_watcher(self, signal_id: int) -> bool:
        """Returns False when a watcher for this signal is already live."""
        return self._start((WATCHER_SIGNAL, signal_id), lambda: self.signal_watcher_factory(signal_id, self.ctx))

    def start_position_watcher(self, user_signal_id: int) -> bool:
        """Returns False when a watcher for this user_signal is already live."""
        return self._start(
            (WATCHER_USER_SIGNAL, user_signal_id),
            lambda: self.position_watcher_factory(user_signal_id, self.ctx),
        )

    def _start(self, key: WatcherKey, build: Callable) -> bool:
        if self.is_running(*key):
            logger.debug(f"Watcher {key} already running")
            return False

        watcher = build()
        task = asyncio.create_task(watcher.run(), name=f"{key[0]}-{key[1]}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, key=key: self._on_done(key, t))
        logger.info(f"Started watcher {key[0]} {key[1]}")
        return True

    def _on_done(self, key: WatcherKey, task: asyncio.Task):
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Watcher {key[0]} {key[1]} died: {exc}", exc_info=exc)

    @property
    def running_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def get_status(self) -> dict:
        counts = {WATCHER_SIGNAL: 0, WATCHER_USER_SIGNAL: 0}
        for (kind, _), task in self._tasks.items():
            if not task.done():
                counts[kind] += 1
        return {
            "signal_watchers": counts[WATCHER_SIGNAL],
            "position_watchers": counts[WATCHER_USER_SIGNAL],
        }

    async def stop_all(self):
        """Cancel every watcher; their state is already durable."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"Stopped {len(tasks)} watchers")
