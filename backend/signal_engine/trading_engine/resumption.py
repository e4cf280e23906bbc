"""
Resumption Manager

Rebuilds watchers at startup from durable state only: every open Signal and
every non-terminal UserSignal gets exactly one watcher through the registry.
"""

import logging

from signal_engine.constants import SIGNAL_OPEN_STATUSES, US_OPEN_STATUSES
from signal_engine.trading_engine.context import EngineContext
from signal_engine.trading_engine.watcher_registry import WatcherRegistry

logger = logging.getLogger(__name__)


class ResumptionManager:
    def __init__(self, ctx: EngineContext, registry: WatcherRegistry):
        self.ctx = ctx
        self.registry = registry

    async def resume(self) -> dict:
        """
        Start watchers for every row that was in flight when the process stopped.

        Returns:
            dict with the number of signal and position watchers started
        """
        signals = await self.ctx.store.scan_signals(SIGNAL_OPEN_STATUSES)
        user_signals = await self.ctx.store.scan_user_signals(US_OPEN_STATUSES)

        started_signals = sum(1 for s in signals if self.registry.start_signal_watcher(s.id))
        started_positions = sum(1 for us in user_signals if self.registry.start_position_watcher(us.id))

        logger.info(
            f"Resumed {started_signals} signal watchers and {started_positions} position watchers "
            f"({len(signals)} open signals, {len(user_signals)} open user signals)"
        )
        return {"signals": started_signals, "user_signals": started_positions}
