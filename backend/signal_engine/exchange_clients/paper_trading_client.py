"""
Paper Trading Exchange Client

Simulates order execution for paper trading api keys without hitting real
exchanges. Uses real market prices from a PriceFeed and fakes fills:

- market orders fill immediately at the current price
- limit buy fills once price <= limit, limit sell once price >= limit
- stop (sell) triggers at price <= trigger, stop (buy) at price >= trigger
- take_profit (sell) triggers at price >= trigger, (buy) at price <= trigger

Orders live in the paper_orders table, so a restart sees the same order book.
Pending orders are evaluated lazily whenever their status is queried.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from signal_engine.constants import (
    ORDER_CANCELLED,
    ORDER_FILLED,
    ORDER_LIMIT,
    ORDER_MARKET,
    ORDER_MISSING,
    ORDER_PENDING,
    ORDER_STOP,
    ORDER_TAKE_PROFIT,
)
from signal_engine.exceptions import OrderRejectedError
from signal_engine.exchange_clients.base import (
    ExchangeClient,
    MarketPrecision,
    OrderResult,
    OrderStatusInfo,
)
from signal_engine.models import PaperOrder
from signal_engine.price_feeds.base import PriceFeed

logger = logging.getLogger(__name__)


def should_fill(order_kind: str, side: str, trigger: Optional[float], price: float) -> bool:
    """Whether a pending simulated order fills at ``price``."""
    if order_kind == ORDER_MARKET or trigger is None:
        return True
    if order_kind == ORDER_LIMIT:
        return price <= trigger if side == "buy" else price >= trigger
    if order_kind == ORDER_STOP:
        return price >= trigger if side == "buy" else price <= trigger
    if order_kind == ORDER_TAKE_PROFIT:
        return price <= trigger if side == "buy" else price >= trigger
    return False


class PaperTradingClient(ExchangeClient):
    """
    Simulated exchange client for paper trading.

    One instance per paper api key; orders are scoped by api_id so two paper
    accounts never see each other's orders.
    """

    exchange_name = "paper"

    def __init__(
        self,
        api_id: int,
        session_maker: async_sessionmaker,
        price_feed: PriceFeed,
        precision: Optional[MarketPrecision] = None,
    ):
        self.api_id = api_id
        self.session_maker = session_maker
        self.price_feed = price_feed
        self.precision = precision or MarketPrecision(price=8, amount=6)
        logger.info(f"Initialized paper trading client for api key {api_id}")

    async def get_price(self, symbol: str) -> float:
        """Paper trading uses real price data for realistic simulation."""
        return await self.price_feed.get_price(symbol)

    async def get_market_precision(self, symbol: str) -> MarketPrecision:
        return self.precision

    async def place_order(
        self,
        symbol: str,
        side: str,
        volume: float,
        price: Optional[float] = None,
        order_kind: str = ORDER_LIMIT,
        client_order_id: Optional[str] = None,
    ) -> OrderResult:
        if volume is None or volume <= 0:
            raise OrderRejectedError(f"Paper order rejected: invalid volume {volume}")
        if order_kind in (ORDER_STOP, ORDER_TAKE_PROFIT) and price is None:
            raise OrderRejectedError(f"Paper {order_kind} order rejected: trigger price required")
        if order_kind == ORDER_LIMIT and price is None:
            order_kind = ORDER_MARKET

        market_price = await self.price_feed.get_price(symbol)

        order = PaperOrder(
            api_id=self.api_id,
            client_order_id=client_order_id,
            symbol=symbol,
            side=side,
            order_kind=order_kind,
            volume=volume,
            price=price,
            status=ORDER_PENDING,
        )
        self._maybe_fill(order, market_price)

        try:
            async with self.session_maker() as db:
                db.add(order)
                await db.commit()
        except IntegrityError:
            # Same client_order_id already placed: hand back the existing order
            existing = await self._load(symbol, None, client_order_id)
            if existing is None:
                raise
            logger.info(f"Paper order {client_order_id} already exists as #{existing.id}")
            order = existing

        logger.info(
            f"Paper {order_kind} {side} {volume} {symbol} @ {price or market_price} "
            f"-> #{order.id} ({order.status})"
        )
        return OrderResult(
            ticket=str(order.id),
            status=order.status,
            filled_volume=order.filled_volume or 0.0,
            average_price=order.average_price,
            client_order_id=client_order_id,
        )

    def _maybe_fill(self, order: PaperOrder, market_price: float) -> bool:
        if order.status != ORDER_PENDING:
            return False
        if not should_fill(order.order_kind, order.side, order.price, market_price):
            return False
        order.status = ORDER_FILLED
        order.filled_volume = order.volume
        # Limit / trigger orders fill at their level, market orders at market
        order.average_price = order.price if order.order_kind != ORDER_MARKET and order.price else market_price
        order.filled_at = datetime.utcnow()
        return True

    async def _load(self, symbol: str, ticket: Optional[str], client_order_id: Optional[str]) -> Optional[PaperOrder]:
        async with self.session_maker() as db:
            query = select(PaperOrder).where(PaperOrder.api_id == self.api_id)
            if ticket:
                try:
                    query = query.where(PaperOrder.id == int(ticket))
                except ValueError:
                    return None
            else:
                query = query.where(PaperOrder.client_order_id == client_order_id)
            result = await db.execute(query)
            return result.scalar_one_or_none()

    async def get_order_status(
        self,
        symbol: str,
        ticket: Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> OrderStatusInfo:
        if not ticket and not client_order_id:
            raise ValueError("get_order_status needs a ticket or a client_order_id")

        order = await self._load(symbol, ticket, client_order_id)
        if order is None:
            return OrderStatusInfo(state=ORDER_MISSING, ticket=ticket)

        if order.status == ORDER_PENDING:
            market_price = await self.price_feed.get_price(order.symbol)
            async with self.session_maker() as db:
                order = await db.get(PaperOrder, order.id)
                if self._maybe_fill(order, market_price):
                    await db.commit()
                    logger.info(f"Paper order #{order.id} filled at {order.average_price}")

        return OrderStatusInfo(
            state=order.status,
            ticket=str(order.id),
            filled_volume=order.filled_volume or 0.0,
            average_price=order.average_price,
        )

    async def cancel_order(self, symbol: str, ticket: str) -> bool:
        try:
            order_id = int(ticket)
        except (TypeError, ValueError):
            return False
        async with self.session_maker() as db:
            order = await db.get(PaperOrder, order_id)
            if order is None or order.api_id != self.api_id or order.status != ORDER_PENDING:
                return False
            order.status = ORDER_CANCELLED
            await db.commit()
        logger.info(f"Paper order #{ticket} cancelled")
        return True
