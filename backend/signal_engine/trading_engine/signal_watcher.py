"""
Signal Watcher

Drives one Signal through pending -> active -> closed, or pending -> cancelled.

The watcher keeps no state that matters across restarts: every tick re-reads
the row, so a watcher rebuilt by the resumption manager continues exactly
where the previous one stopped. The only in-memory value is the last seen
price, used to detect the price crossing the entry level between two ticks.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from signal_engine.constants import (
    LONG,
    RESULT_ADMIN,
    RESULT_EXPIRED,
    RESULT_INVALIDATED,
    RESULT_SL,
    RESULT_TP,
    SIGNAL_ACTIVE,
    SIGNAL_CANCELLED,
    SIGNAL_CLOSED,
    SIGNAL_PENDING,
    SIGNAL_TERMINAL_STATUSES,
    US_ACTIVE,
    US_CLOSED,
)
from signal_engine.exceptions import ExchangeUnavailableError
from signal_engine.models import Signal
from signal_engine.trading_engine import messages
from signal_engine.trading_engine.context import EngineContext
from signal_engine.utils.backoff import backoff_delay, retry_with_backoff

logger = logging.getLogger(__name__)


def within_tolerance(price: float, entry: float, tolerance_pct: float) -> bool:
    """Whether ``price`` is within ``tolerance_pct`` percent of ``entry``."""
    if entry <= 0:
        return False
    return abs(price - entry) / entry * 100 <= tolerance_pct


def crossed(previous: Optional[float], current: float, level: float) -> bool:
    """Whether price moved from one side of ``level`` to the other (or onto it)."""
    if previous is None:
        return False
    return (previous - level) * (current - level) <= 0


def stop_hit(direction: str, price: float, stop_loss: float) -> bool:
    return price <= stop_loss if direction == LONG else price >= stop_loss


def target_hit(direction: str, price: float, take_profit: float) -> bool:
    return price >= take_profit if direction == LONG else price <= take_profit


class SignalWatcher:
    """Owns the lifecycle of a single Signal row."""

    def __init__(self, signal_id: int, ctx: EngineContext, poll_seconds: Optional[float] = None):
        self.signal_id = signal_id
        self.ctx = ctx
        self.poll_seconds = poll_seconds if poll_seconds is not None else ctx.settings.signal_poll_seconds
        self.last_price: Optional[float] = None
        self.error_streak = 0

    async def run(self):
        """Tick until the signal reaches a terminal status."""
        logger.info(f"Signal watcher started for signal {self.signal_id}")
        while True:
            try:
                if await self.step():
                    logger.info(f"Signal watcher for signal {self.signal_id} finished")
                    return
                self.error_streak = 0
            except Exception as e:
                self.error_streak += 1
                logger.error(f"Signal watcher {self.signal_id} error: {e}", exc_info=True)

            await asyncio.sleep(self._next_delay())

    def _next_delay(self) -> float:
        if self.error_streak == 0:
            return self.poll_seconds
        settings = self.ctx.settings
        return max(self.poll_seconds, backoff_delay(self.error_streak, settings.backoff_base_seconds, settings.backoff_max_seconds))

    async def step(self) -> bool:
        """
        Run one tick.

        Returns:
            True once the signal is terminal and the watcher should stop
        """
        signal = await self.ctx.store.fetch_signal(self.signal_id)
        if signal is None:
            logger.warning(f"Signal {self.signal_id} no longer exists, stopping watcher")
            return True
        if signal.status in SIGNAL_TERMINAL_STATUSES:
            return True

        if signal.cancel_requested:
            await self._transition(signal, SIGNAL_CANCELLED, RESULT_ADMIN)
            return True

        if signal.status == SIGNAL_PENDING and self._expired(signal):
            await self._transition(signal, SIGNAL_CANCELLED, RESULT_EXPIRED)
            return True

        price = await self._fetch_price(signal.symbol)
        if price is None:
            return False

        try:
            if signal.status == SIGNAL_PENDING:
                return await self._check_pending(signal, price)
            return await self._check_active(signal, price)
        finally:
            self.last_price = price

    async def _fetch_price(self, symbol: str) -> Optional[float]:
        settings = self.ctx.settings
        try:
            return await retry_with_backoff(
                lambda: self.ctx.price_feed.get_price(symbol),
                max_attempts=settings.price_retry_attempts,
                retry_on=(ExchangeUnavailableError,),
                base=settings.backoff_base_seconds,
                cap=settings.backoff_max_seconds,
                description=f"price for {symbol}",
            )
        except ExchangeUnavailableError as e:
            # No data is not a signal: keep the status, try again next tick
            logger.warning(f"Signal {self.signal_id}: price unavailable for {symbol}, skipping tick ({e})")
            return None

    def _expired(self, signal: Signal) -> bool:
        if signal.created_at is None:
            return False
        timeout = timedelta(minutes=self.ctx.settings.signal_entry_timeout_minutes)
        return datetime.utcnow() - signal.created_at > timeout

    async def _entry_confirmed_by_user(self) -> bool:
        """Any subscriber's entry filling proves the entry level traded."""
        rows = await self.ctx.store.scan_user_signals((US_ACTIVE, US_CLOSED), signal_id=self.signal_id)
        return bool(rows)

    async def _check_pending(self, signal: Signal, price: float) -> bool:
        if await self._entry_confirmed_by_user():
            logger.info(f"Signal {signal.id}: entry confirmed by a filled user order")
            await self._transition(signal, SIGNAL_ACTIVE)
            return False

        if stop_hit(signal.direction, price, signal.stop_loss):
            logger.info(f"Signal {signal.id}: price {price} hit stop {signal.stop_loss} before entry")
            await self._transition(signal, SIGNAL_CANCELLED, RESULT_INVALIDATED)
            return True

        entry = signal.entry_price
        if (
            entry is None
            or within_tolerance(price, entry, self.ctx.settings.entry_tolerance_pct)
            or crossed(self.last_price, price, entry)
        ):
            logger.info(f"Signal {signal.id}: entry reached at {price} (entry {entry})")
            await self._transition(signal, SIGNAL_ACTIVE)
        return False

    async def _check_active(self, signal: Signal, price: float) -> bool:
        if target_hit(signal.direction, price, signal.take_profit):
            await self._transition(signal, SIGNAL_CLOSED, RESULT_TP, close_price=price)
            return True
        if stop_hit(signal.direction, price, signal.stop_loss):
            await self._transition(signal, SIGNAL_CLOSED, RESULT_SL, close_price=price)
            return True
        return False

    async def _transition(
        self,
        signal: Signal,
        status: str,
        result: Optional[str] = None,
        close_price: Optional[float] = None,
    ):
        """Persist the new status first, then broadcast it."""
        now = datetime.utcnow()
        values = {"status": status}
        if status == SIGNAL_ACTIVE:
            values["activated_at"] = now
        else:
            values["result"] = result
            values["closed_at"] = now
            if close_price is not None:
                values["close_price"] = close_price

        updated = await self.ctx.store.update_signal(signal.id, **values)
        logger.info(f"Signal {signal.id} {signal.symbol} {signal.status} -> {status}" + (f" ({result})" if result else ""))

        if updated is not None:
            self.ctx.notifications.enqueue(
                self.ctx.settings.telegram_channel_id,
                messages.signal_broadcast(updated),
            )
