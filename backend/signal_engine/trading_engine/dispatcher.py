"""
Signal Dispatcher

Fans newly created signals out to subscribers: one UserSignal per eligible
(user, api key) pair, then starts the signal's watcher and one position
watcher per row.

Dispatch is idempotent. The (signal_id, user_id, api_id) unique constraint
makes a second insert fail, and that failure is treated as "already there",
so re-running dispatch for the same signal never creates a second row.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from signal_engine.constants import SIGNAL_OPEN_STATUSES, US_OPEN_STATUSES, US_PENDING, US_STATUS_LABELS
from signal_engine.models import ApiKey, Signal, User, UserSignal
from signal_engine.trading_engine.context import EngineContext
from signal_engine.trading_engine.watcher_registry import WatcherRegistry

logger = logging.getLogger(__name__)


class SignalDispatcher:
    """Polls for undispatched signals and creates their UserSignal rows."""

    def __init__(self, ctx: EngineContext, registry: WatcherRegistry, interval_seconds: Optional[float] = None):
        self.ctx = ctx
        self.registry = registry
        self.interval_seconds = interval_seconds if interval_seconds is not None else ctx.settings.dispatch_poll_seconds
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the dispatch loop"""
        if self.running:
            return
        self.running = True
        self.task = asyncio.create_task(self._dispatch_loop())
        logger.info(f"Signal dispatcher started (interval: {self.interval_seconds}s)")

    async def stop(self):
        """Stop the dispatch loop"""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
            logger.info("Signal dispatcher stopped")

    async def _dispatch_loop(self):
        while self.running:
            try:
                await self.dispatch_pending()
            except Exception as e:
                logger.error(f"Signal dispatcher error: {e}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)

    async def dispatch_pending(self) -> int:
        """Dispatch every open signal not yet fanned out. Returns rows created."""
        async def _scan(session: AsyncSession):
            result = await session.execute(
                select(Signal.id)
                .where(Signal.dispatched.is_(False))
                .where(Signal.status.in_(SIGNAL_OPEN_STATUSES))
                .order_by(Signal.id)
            )
            return list(result.scalars().all())

        signal_ids = await self.ctx.store.run(_scan, "scan undispatched signals")
        created = 0
        for signal_id in signal_ids:
            created += await self.dispatch_signal(signal_id)
        return created

    async def eligible_api_keys(self, signal: Signal, now: Optional[datetime] = None) -> List[ApiKey]:
        """Active api keys on the signal's market owned by users with a live subscription."""
        now = now or datetime.utcnow()

        async def _query(session: AsyncSession):
            result = await session.execute(
                select(ApiKey)
                .join(User, ApiKey.user_id == User.id)
                .where(User.is_active.is_(True))
                .where(or_(User.subscription_expires_at.is_(None), User.subscription_expires_at > now))
                .where(ApiKey.is_active.is_(True))
                .where(ApiKey.market == signal.market)
                .order_by(ApiKey.id)
            )
            return list(result.scalars().all())

        return await self.ctx.store.run(_query, f"eligible api keys for signal {signal.id}")

    async def dispatch_signal(self, signal_id: int) -> int:
        """
        Fan one signal out and start its watchers.

        Returns:
            Number of UserSignal rows created by this call (0 on re-dispatch)
        """
        signal = await self.ctx.store.fetch_signal(signal_id)
        if signal is None:
            logger.warning(f"Cannot dispatch signal {signal_id}: not found")
            return 0
        if signal.status not in SIGNAL_OPEN_STATUSES:
            logger.info(f"Signal {signal_id} is {signal.status}, nothing to dispatch")
            return 0

        existing = {
            (row.user_id, row.api_id)
            for row in await self.ctx.store.scan_user_signals(
                tuple(US_STATUS_LABELS), signal_id=signal_id
            )
        }

        created = 0
        for api_key in await self.eligible_api_keys(signal):
            if (api_key.user_id, api_key.id) in existing:
                continue
            row = UserSignal(
                user_id=api_key.user_id,
                signal_id=signal.id,
                api_id=api_key.id,
                lotsize=api_key.lotsize,
                leverage=api_key.leverage or 1,
                strategy=api_key.strategy,
                symbol=signal.symbol,
                direction=signal.direction,
                sl=signal.stop_loss,
                tp=signal.take_profit,
                status=US_PENDING,
            )
            try:
                await self.ctx.store.insert(row)
                created += 1
            except IntegrityError:
                logger.debug(f"UserSignal for signal {signal_id}, user {api_key.user_id}, api {api_key.id} already exists")

        await self.ctx.store.update_signal(signal.id, dispatched=True)
        logger.info(f"Dispatched signal {signal.id} {signal.symbol} {signal.direction}: {created} new user signals")

        self.registry.start_signal_watcher(signal.id)
        for row in await self.ctx.store.scan_user_signals(US_OPEN_STATUSES, signal_id=signal.id):
            self.registry.start_position_watcher(row.id)
        return created
