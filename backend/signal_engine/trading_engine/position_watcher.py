"""
Position Watcher

Executes one UserSignal on the user's exchange account:

    entry (status 0) -> protective orders + monitoring (status 1) -> close (status 2)

with terminal side exits to failed (3) and cancelled (4).

Crash safety rests on two rules:
- every order carries a deterministic client order id (us<id>-entry,
  us<id>-sl, ...), so after a restart the exchange can be asked about an
  order whose confirmation was never persisted
- sl_wait / tp_wait are persisted True *before* a protective order is sent;
  a watcher that finds a flag set reconciles with the exchange and never
  places blindly

Exchange truth wins on every mismatch.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from signal_engine.constants import (
    ORDER_CANCELLED,
    ORDER_FILLED,
    ORDER_LIMIT,
    ORDER_MARKET,
    ORDER_MISSING,
    ORDER_PENDING,
    ORDER_STOP,
    ORDER_TAKE_PROFIT,
    SIGNAL_TERMINAL_STATUSES,
    US_ACTIVE,
    US_CANCELLED,
    US_CLOSED,
    US_FAILED,
    US_OPEN_STATUSES,
    US_PENDING,
    client_order_id,
    entry_side,
    exit_side,
)
from signal_engine.exceptions import (
    ExchangeUnavailableError,
    InvalidCredentialsError,
    OrderRejectedError,
)
from signal_engine.exchange_clients.base import (
    ExchangeClient,
    MarketPrecision,
    OrderResult,
    OrderStatusInfo,
)
from signal_engine.models import Signal, UserSignal
from signal_engine.precision import amount_to_precision, round_to_precision
from signal_engine.services.shutdown_manager import ShutdownInProgressError
from signal_engine.trading_engine import messages
from signal_engine.trading_engine.context import EngineContext
from signal_engine.trading_engine.pnl import calculate_profit
from signal_engine.utils.backoff import backoff_delay

logger = logging.getLogger(__name__)

CLOSE_MANUAL = "manual"


@dataclass(frozen=True)
class ProtectiveLeg:
    """Column names and order kind for one protective order."""
    name: str
    ticket_field: str
    wait_field: str
    seq_field: str
    level_field: str
    order_kind: str


STOP_LEG = ProtectiveLeg("sl", "sticket", "sl_wait", "sl_seq", "sl", ORDER_STOP)
TAKE_PROFIT_LEG = ProtectiveLeg("tp", "tticket", "tp_wait", "tp_seq", "tp", ORDER_TAKE_PROFIT)
PROTECTIVE_LEGS = (STOP_LEG, TAKE_PROFIT_LEG)


def remaining_volume(row: UserSignal) -> float:
    return max((row.volume or 0.0) - (row.closed_volume or 0.0), 0.0)


class PositionWatcher:
    """Owns the execution of a single UserSignal row."""

    def __init__(self, user_signal_id: int, ctx: EngineContext, poll_seconds: Optional[float] = None):
        self.user_signal_id = user_signal_id
        self.ctx = ctx
        self.poll_seconds = poll_seconds if poll_seconds is not None else ctx.settings.position_poll_seconds
        self.error_streak = 0
        self._precision: Dict[str, MarketPrecision] = {}

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self):
        logger.info(f"Position watcher started for user_signal {self.user_signal_id}")
        while True:
            try:
                if await self.step():
                    logger.info(f"Position watcher for user_signal {self.user_signal_id} finished")
                    return
                self.error_streak = 0
            except ShutdownInProgressError:
                logger.info(f"Position watcher {self.user_signal_id} stopping for shutdown")
                return
            except ExchangeUnavailableError as e:
                self.error_streak += 1
                logger.warning(f"user_signal {self.user_signal_id}: exchange unavailable ({e}), will retry")
            except Exception as e:
                self.error_streak += 1
                logger.error(f"Position watcher {self.user_signal_id} error: {e}", exc_info=True)

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
            True once the row is terminal and the watcher should stop

        Raises:
            ExchangeUnavailableError: transient, nothing was changed
        """
        row = await self.ctx.store.fetch_user_signal(self.user_signal_id)
        if row is None:
            logger.warning(f"user_signal {self.user_signal_id} no longer exists, stopping watcher")
            return True
        if row.status not in US_OPEN_STATUSES:
            return True

        try:
            signal = await self.ctx.store.fetch_signal(row.signal_id)
            exchange = await self.ctx.exchanges.get(row.api_id)
            if row.status == US_PENDING:
                return await self._entry_phase(row, signal, exchange)
            return await self._active_phase(row, exchange)
        except (OrderRejectedError, InvalidCredentialsError) as e:
            await self._fail(row, e.message)
            return True

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def _entry_phase(self, row: UserSignal, signal: Optional[Signal], exchange: ExchangeClient) -> bool:
        signal_done = signal is None or signal.status in SIGNAL_TERMINAL_STATUSES

        if not row.ticket:
            cid = client_order_id(row.id, "entry")
            info = await exchange.get_order_status(row.symbol, client_order_id=cid)
            if info.state != ORDER_MISSING and info.ticket:
                logger.info(f"user_signal {row.id}: adopting entry order {info.ticket} found by {cid}")
                row = await self.ctx.store.update_user_signal(
                    row.id, ticket=info.ticket, note=f"Adopted entry order {info.ticket}"
                )
                return await self._check_entry(row, signal, signal_done, exchange, info)

            if signal_done:
                await self._cancel_row(row, "Signal ended before the entry order was placed")
                return True

            await self._place_entry(row, signal, exchange)
            return False

        info = await exchange.get_order_status(row.symbol, ticket=row.ticket)
        return await self._check_entry(row, signal, signal_done, exchange, info)

    async def _place_entry(self, row: UserSignal, signal: Signal, exchange: ExchangeClient):
        precision = await self._get_precision(exchange, row.symbol)
        if signal.entry_price is None:
            order_kind = ORDER_MARKET
            price = None
            reference = await exchange.get_price(row.symbol)
        else:
            order_kind = ORDER_LIMIT
            price = round_to_precision(signal.entry_price, precision.price)
            reference = price

        if not reference or reference <= 0:
            raise ExchangeUnavailableError(f"No usable reference price for {row.symbol}")

        volume = amount_to_precision(row.lotsize * (row.leverage or 1) / reference, precision.amount)
        if math.isnan(volume) or volume <= 0:
            raise OrderRejectedError(
                f"Order size for lotsize {row.lotsize} x{row.leverage} at {reference} rounds to zero"
            )

        side = entry_side(row.direction)
        cid = client_order_id(row.id, "entry")
        async with self.ctx.shutdown.order_in_flight(cid):
            result = await self._place(
                exchange, cid,
                symbol=row.symbol, side=side, volume=volume, price=price, order_kind=order_kind,
            )
            await self.ctx.store.update_user_signal(
                row.id,
                ticket=result.ticket,
                volume=volume,
                note=f"Entry {order_kind} {side} {volume} @ {price if price is not None else 'market'} placed ({result.ticket})",
            )
        logger.info(f"user_signal {row.id}: entry {order_kind} {side} {volume} {row.symbol} placed as {result.ticket}")

    async def _check_entry(
        self,
        row: UserSignal,
        signal: Optional[Signal],
        signal_done: bool,
        exchange: ExchangeClient,
        info: OrderStatusInfo,
    ) -> bool:
        if info.state == ORDER_FILLED:
            await self._mark_open(row, signal, exchange, info)
            return False

        if info.state == ORDER_CANCELLED:
            if info.filled_volume and info.filled_volume > 0:
                # Partially filled then cancelled: the filled part is a real position
                await self._mark_open(row, signal, exchange, info)
                return False
            if signal_done:
                await self._cancel_row(row, f"Entry order {row.ticket} cancelled after the signal ended")
            else:
                await self._fail(row, f"Entry order {row.ticket} was cancelled on the exchange")
            return True

        if info.state == ORDER_MISSING:
            await self.ctx.store.update_user_signal(
                row.id, ticket=None, note=f"Entry order {row.ticket} not found on exchange, reconciling"
            )
            return False

        # Pending
        if signal_done:
            await exchange.cancel_order(row.symbol, row.ticket)
            info = await exchange.get_order_status(row.symbol, ticket=row.ticket)
            if info.state == ORDER_FILLED or (info.filled_volume and info.filled_volume > 0):
                await self._mark_open(row, signal, exchange, info)
                return False
            if info.state == ORDER_PENDING:
                raise ExchangeUnavailableError(f"Entry order {row.ticket} could not be cancelled yet")
            await self._cancel_row(row, f"Signal ended, entry order {row.ticket} cancelled")
            return True
        return False

    async def _mark_open(
        self,
        row: UserSignal,
        signal: Optional[Signal],
        exchange: ExchangeClient,
        info: OrderStatusInfo,
    ):
        open_price = info.average_price
        if not open_price and signal is not None:
            open_price = signal.entry_price
        if not open_price:
            open_price = await exchange.get_price(row.symbol)

        volume = info.filled_volume or row.volume
        updated = await self.ctx.store.update_user_signal(
            row.id,
            status=US_ACTIVE,
            open_price=open_price,
            opened_at=datetime.utcnow(),
            volume=volume,
            sl=signal.stop_loss if signal is not None else row.sl,
            tp=signal.take_profit if signal is not None else row.tp,
            note=f"Entry filled: {volume} @ {open_price}",
        )
        logger.info(f"user_signal {row.id}: {row.symbol} {row.direction} opened at {open_price} ({volume})")
        await self._notify_user(updated, messages.position_opened(updated))

    # ------------------------------------------------------------------
    # Active: protective orders and monitoring
    # ------------------------------------------------------------------

    async def _active_phase(self, row: UserSignal, exchange: ExchangeClient) -> bool:
        if row.close_requested:
            await self._close(row, exchange, CLOSE_MANUAL)
            return True

        for leg in PROTECTIVE_LEGS:
            ticket = getattr(row, leg.ticket_field)
            if not ticket:
                continue
            info = await exchange.get_order_status(row.symbol, ticket=ticket)
            if info.state == ORDER_FILLED:
                await self._close(row, exchange, leg.name, fill=info)
                return True
            if info.state in (ORDER_CANCELLED, ORDER_MISSING):
                logger.warning(f"user_signal {row.id}: {leg.name} order {ticket} is {info.state}, re-placing")
                row = await self.ctx.store.update_user_signal(
                    row.id,
                    note=f"{leg.name.upper()} order {ticket} {info.state} on exchange",
                    **{leg.ticket_field: None, leg.seq_field: (getattr(row, leg.seq_field) or 0) + 1},
                )

        for leg in PROTECTIVE_LEGS:
            row = await self._ensure_protective(row, exchange, leg)
        return False

    async def _ensure_protective(self, row: UserSignal, exchange: ExchangeClient, leg: ProtectiveLeg) -> UserSignal:
        """Make sure ``leg`` has a confirmed order on the exchange, reconciling before ever re-placing."""
        if getattr(row, leg.ticket_field):
            return row
        level = getattr(row, leg.level_field)
        if level is None:
            return row

        cid = client_order_id(row.id, leg.name, getattr(row, leg.seq_field) or 0)

        if getattr(row, leg.wait_field):
            info = await exchange.get_order_status(row.symbol, client_order_id=cid)
            if info.state in (ORDER_PENDING, ORDER_FILLED) and info.ticket:
                logger.info(f"user_signal {row.id}: reconciled {leg.name} order {info.ticket} ({info.state})")
                return await self.ctx.store.update_user_signal(
                    row.id,
                    note=f"Reconciled {leg.name.upper()} order {info.ticket}",
                    **{leg.ticket_field: info.ticket, leg.wait_field: False},
                )
            if info.state == ORDER_CANCELLED:
                return await self.ctx.store.update_user_signal(
                    row.id,
                    note=f"{leg.name.upper()} order {cid} was cancelled before confirmation",
                    **{leg.wait_field: False, leg.seq_field: (getattr(row, leg.seq_field) or 0) + 1},
                )
            return await self.ctx.store.update_user_signal(
                row.id,
                note=f"{leg.name.upper()} order {cid} never reached the exchange",
                **{leg.wait_field: False},
            )

        volume = remaining_volume(row)
        if volume <= 0:
            return row

        row = await self.ctx.store.update_user_signal(row.id, **{leg.wait_field: True})

        precision = await self._get_precision(exchange, row.symbol)
        price = round_to_precision(level, precision.price)
        volume = amount_to_precision(volume, precision.amount)
        side = exit_side(row.direction)

        async with self.ctx.shutdown.order_in_flight(cid):
            result = await self._place(
                exchange, cid,
                symbol=row.symbol, side=side, volume=volume, price=price, order_kind=leg.order_kind,
            )
            row = await self.ctx.store.update_user_signal(
                row.id,
                note=f"{leg.name.upper()} {leg.order_kind} {side} {volume} @ {price} placed ({result.ticket})",
                **{leg.ticket_field: result.ticket, leg.wait_field: False},
            )
        logger.info(f"user_signal {row.id}: {leg.name} order placed at {price} as {result.ticket}")
        return row

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def _close(
        self,
        row: UserSignal,
        exchange: ExchangeClient,
        trigger: str,
        fill: Optional[OrderStatusInfo] = None,
    ):
        for leg in PROTECTIVE_LEGS:
            if leg.name == trigger:
                continue
            leg_fill = await self._cancel_leg(row, exchange, leg)
            if leg_fill is None:
                continue
            if fill is None:
                # A protective order beat the manual close to it
                trigger, fill = leg.name, leg_fill
            else:
                logger.error(f"user_signal {row.id}: both {trigger} and {leg.name} orders filled")

        if fill is None:
            fill = await self._close_at_market(row, exchange)

        level = row.tp if trigger == TAKE_PROFIT_LEG.name else row.sl if trigger == STOP_LEG.name else None
        close_price = fill.average_price or level
        if not close_price:
            close_price = await exchange.get_price(row.symbol)

        closed_volume = min(fill.filled_volume or remaining_volume(row), row.volume or 0.0)
        profit, profit_usdt = calculate_profit(row.direction, row.open_price, close_price, closed_volume)

        updated = await self.ctx.store.update_user_signal(
            row.id,
            status=US_CLOSED,
            close_price=close_price,
            closed_at=datetime.utcnow(),
            closed_volume=closed_volume,
            profit=profit,
            profit_usdt=profit_usdt,
            sl_wait=False,
            tp_wait=False,
            note=f"Closed by {trigger} at {close_price}: {profit}% ({profit_usdt})",
        )
        logger.info(f"user_signal {row.id}: closed by {trigger} at {close_price}, profit {profit}% ({profit_usdt})")
        await self._notify_user(updated, messages.position_closed(updated, trigger))

    async def _cancel_leg(
        self, row: UserSignal, exchange: ExchangeClient, leg: ProtectiveLeg
    ) -> Optional[OrderStatusInfo]:
        """
        Cancel a surviving protective order. Already cancelled or missing
        counts as done; returns the fill info if the order turned out filled.
        """
        ticket = getattr(row, leg.ticket_field)
        if not ticket and getattr(row, leg.wait_field):
            cid = client_order_id(row.id, leg.name, getattr(row, leg.seq_field) or 0)
            info = await exchange.get_order_status(row.symbol, client_order_id=cid)
            if info.state != ORDER_MISSING:
                ticket = info.ticket
        if not ticket:
            return None

        if await exchange.cancel_order(row.symbol, ticket):
            logger.info(f"user_signal {row.id}: cancelled {leg.name} order {ticket}")
            return None

        info = await exchange.get_order_status(row.symbol, ticket=ticket)
        if info.state == ORDER_FILLED:
            return info
        if info.state == ORDER_PENDING:
            raise ExchangeUnavailableError(f"{leg.name} order {ticket} could not be cancelled yet")
        return None

    async def _close_at_market(self, row: UserSignal, exchange: ExchangeClient) -> OrderStatusInfo:
        cid = client_order_id(row.id, "close")
        info = await exchange.get_order_status(row.symbol, client_order_id=cid)
        if info.state == ORDER_MISSING:
            precision = await self._get_precision(exchange, row.symbol)
            volume = amount_to_precision(remaining_volume(row), precision.amount)
            async with self.ctx.shutdown.order_in_flight(cid):
                result = await self._place(
                    exchange, cid,
                    symbol=row.symbol, side=exit_side(row.direction), volume=volume, order_kind=ORDER_MARKET,
                )
            if result.is_filled:
                info = OrderStatusInfo(
                    state=ORDER_FILLED,
                    ticket=result.ticket,
                    filled_volume=result.filled_volume,
                    average_price=result.average_price,
                )
            else:
                info = await exchange.get_order_status(row.symbol, ticket=result.ticket)

        if info.state == ORDER_FILLED:
            return info
        if info.state == ORDER_CANCELLED:
            raise OrderRejectedError(f"Market close order {info.ticket} was cancelled by the exchange")
        raise ExchangeUnavailableError(f"Market close order {info.ticket} not filled yet")

    # ------------------------------------------------------------------
    # Terminal side exits
    # ------------------------------------------------------------------

    async def _fail(self, row: UserSignal, reason: str):
        updated = await self.ctx.store.update_user_signal(
            row.id, status=US_FAILED, sl_wait=False, tp_wait=False, note=f"Failed: {reason}"
        )
        logger.warning(f"user_signal {row.id} failed: {reason}")
        if updated is not None:
            await self._notify_user(updated, messages.position_failed(updated, reason))

    async def _cancel_row(self, row: UserSignal, note: str):
        updated = await self.ctx.store.update_user_signal(row.id, status=US_CANCELLED, note=note)
        logger.info(f"user_signal {row.id} cancelled: {note}")
        if updated is not None:
            await self._notify_user(updated, messages.position_cancelled(updated))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _place(self, exchange: ExchangeClient, cid: str, **order) -> OrderResult:
        """Send one order and wait (bounded) for the exchange to confirm it."""
        timeout = self.ctx.settings.order_confirm_timeout_seconds
        try:
            return await asyncio.wait_for(exchange.place_order(client_order_id=cid, **order), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ExchangeUnavailableError(f"No confirmation for order {cid} after {timeout}s") from e

    async def _get_precision(self, exchange: ExchangeClient, symbol: str) -> MarketPrecision:
        if symbol not in self._precision:
            self._precision[symbol] = await exchange.get_market_precision(symbol)
        return self._precision[symbol]

    async def _notify_user(self, row: UserSignal, message: str):
        user = await self.ctx.store.fetch_user(row.user_id)
        self.ctx.notifications.enqueue(user.telegram_chat_id if user else None, message)
