"""
Shared test fixtures for signal engine tests.

Provides reusable fixtures for:
- Async database sessions (in-memory SQLite)
- A Store bound to the test engine
- A scripted fake exchange client and price feed
- A recording notifier and notification queue
- An EngineContext wired from all of the above
- Row factories for users, api keys, signals and user signals
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from signal_engine.config import Settings
from signal_engine.constants import (
    LONG,
    MARKET_FUTURES,
    ORDER_CANCELLED,
    ORDER_FILLED,
    ORDER_MARKET,
    ORDER_MISSING,
    ORDER_PENDING,
    SIGNAL_PENDING,
    US_PENDING,
)
from signal_engine.exceptions import ExchangeUnavailableError
from signal_engine.exchange_clients.base import (
    ExchangeClient,
    MarketPrecision,
    OrderResult,
    OrderStatusInfo,
)
from signal_engine.price_feeds.base import PriceFeed
from signal_engine.services.notifier import NotificationQueue, Notifier
from signal_engine.services.shutdown_manager import ShutdownManager
from signal_engine.store import Store
from signal_engine.trading_engine.context import EngineContext

# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an in-memory async SQLite engine shared by every session in a test."""
    from signal_engine.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_maker):
    """Provide an async database session for seeding and assertions."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(session_maker):
    """Store with instant retries and a bounded attempt count."""
    return Store(session_maker, retry_base=0.0, retry_cap=0.0, max_attempts=5)


# ---------------------------------------------------------------------------
# Fake exchange, price feed and notifier
# ---------------------------------------------------------------------------


class FakePriceFeed(PriceFeed):
    """PriceFeed returning scripted prices; an Exception value is raised instead."""

    def __init__(self, prices: Optional[Dict[str, object]] = None):
        self.prices: Dict[str, object] = dict(prices or {})
        self.calls = 0

    def set(self, symbol: str, price):
        self.prices[symbol] = price

    async def get_price(self, symbol: str) -> float:
        self.calls += 1
        value = self.prices.get(symbol)
        if value is None:
            raise ExchangeUnavailableError(f"no price for {symbol}")
        if isinstance(value, Exception):
            raise value
        return float(value)


class FakeExchange(ExchangeClient):
    """
    In-memory exchange with a scriptable order book.

    Orders placed stay pending (market orders fill at ``price``) until a test
    calls fill() / cancel(). Every call is recorded for assertions.
    """

    exchange_name = "fake"

    def __init__(self, price: float = 100.0, precision: Optional[MarketPrecision] = None):
        self.price = price
        self.precision = precision or MarketPrecision(price=2, amount=3)
        self.orders: Dict[str, dict] = {}
        self.placed: List[dict] = []
        self.cancelled: List[str] = []
        self.status_calls: List[dict] = []
        self.place_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None
        self.place_delay: float = 0.0
        self._next_id = 1

    def add_order(self, client_order_id: Optional[str] = None, state: str = ORDER_PENDING, **fields) -> str:
        """Put an order on the book directly, as if a previous process had placed it."""
        ticket = f"T{self._next_id}"
        self._next_id += 1
        order = {
            "ticket": ticket,
            "client_order_id": client_order_id,
            "symbol": fields.get("symbol", "BTC/USDT"),
            "side": fields.get("side", "buy"),
            "volume": fields.get("volume", 1.0),
            "price": fields.get("price"),
            "order_kind": fields.get("order_kind", "limit"),
            "state": state,
            "filled_volume": fields.get("filled_volume", 0.0),
            "average_price": fields.get("average_price"),
        }
        self.orders[ticket] = order
        return ticket

    def ticket_for(self, client_order_id: str) -> Optional[str]:
        for order in self.orders.values():
            if order["client_order_id"] == client_order_id:
                return order["ticket"]
        return None

    def fill(self, ticket: str, price: Optional[float] = None, volume: Optional[float] = None):
        order = self.orders[ticket]
        order["state"] = ORDER_FILLED
        order["filled_volume"] = volume if volume is not None else order["volume"]
        order["average_price"] = price if price is not None else (order["price"] or self.price)

    def cancel(self, ticket: str):
        self.orders[ticket]["state"] = ORDER_CANCELLED

    def remove(self, ticket: str):
        del self.orders[ticket]

    async def place_order(self, symbol, side, volume, price=None, order_kind="limit", client_order_id=None):
        self.placed.append({
            "symbol": symbol,
            "side": side,
            "volume": volume,
            "price": price,
            "order_kind": order_kind,
            "client_order_id": client_order_id,
        })
        if self.place_error is not None:
            raise self.place_error
        ticket = self.add_order(
            client_order_id=client_order_id,
            symbol=symbol, side=side, volume=volume, price=price, order_kind=order_kind,
        )
        if order_kind == ORDER_MARKET:
            self.fill(ticket, price=self.price)
        if self.place_delay:
            # The order reached the book; only the confirmation is slow
            await asyncio.sleep(self.place_delay)
        order = self.orders[ticket]
        return OrderResult(
            ticket=ticket,
            status=order["state"],
            filled_volume=order["filled_volume"],
            average_price=order["average_price"],
            client_order_id=client_order_id,
        )

    async def get_order_status(self, symbol, ticket=None, client_order_id=None):
        self.status_calls.append({"ticket": ticket, "client_order_id": client_order_id})
        if self.status_error is not None:
            raise self.status_error
        if ticket is None and client_order_id is not None:
            ticket = self.ticket_for(client_order_id)
        order = self.orders.get(ticket) if ticket else None
        if order is None:
            return OrderStatusInfo(state=ORDER_MISSING, ticket=ticket)
        return OrderStatusInfo(
            state=order["state"],
            ticket=order["ticket"],
            filled_volume=order["filled_volume"],
            average_price=order["average_price"],
        )

    async def cancel_order(self, symbol, ticket):
        order = self.orders.get(ticket)
        if order is None or order["state"] != ORDER_PENDING:
            return False
        order["state"] = ORDER_CANCELLED
        self.cancelled.append(ticket)
        return True

    async def get_price(self, symbol):
        return self.price

    async def get_market_precision(self, symbol):
        return self.precision


class RecordingNotifier(Notifier):
    """Notifier that records messages, or raises ``error`` when set."""

    def __init__(self):
        self.messages: List[tuple] = []
        self.error: Optional[Exception] = None

    async def notify(self, target: str, message: str) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append((target, message))


@pytest.fixture
def price_feed():
    return FakePriceFeed({"BTC/USDT": 100.0})


@pytest.fixture
def fake_exchange():
    return FakeExchange(price=100.0)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def notifications(notifier):
    return NotificationQueue(notifier, timeout=1.0)


@pytest.fixture
def drain_notifications(notifications):
    """Deliver everything queued so far, synchronously from the test."""
    async def _drain():
        while notifications.pending:
            target, message = notifications._queue.get_nowait()
            await notifications.deliver_one(target, message)
            notifications._queue.task_done()

    return _drain


@pytest.fixture
def mock_exchange_provider(fake_exchange):
    provider = MagicMock()
    provider.get = AsyncMock(return_value=fake_exchange)
    provider.clear = AsyncMock()
    return provider


@pytest.fixture
def test_settings():
    return Settings(
        signal_poll_seconds=0.0,
        position_poll_seconds=0.0,
        dispatch_poll_seconds=0.0,
        entry_tolerance_pct=0.1,
        signal_entry_timeout_minutes=60,
        order_confirm_timeout_seconds=1.0,
        price_retry_attempts=2,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        telegram_channel_id="@signals",
    )


@pytest.fixture
def engine_ctx(store, mock_exchange_provider, price_feed, notifications, test_settings):
    return EngineContext(
        store=store,
        exchanges=mock_exchange_provider,
        price_feed=price_feed,
        notifications=notifications,
        settings=test_settings,
        shutdown=ShutdownManager(),
    )


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------


class Factory:
    """Creates committed rows through the test session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _add(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def user(self, **fields):
        from signal_engine.models import User

        fields.setdefault("telegram_chat_id", "1001")
        fields.setdefault("username", "trader")
        fields.setdefault("is_active", True)
        return await self._add(User(**fields))

    async def api_key(self, user, **fields):
        from signal_engine.models import ApiKey

        fields.setdefault("exchange", "paper")
        fields.setdefault("market", MARKET_FUTURES)
        fields.setdefault("is_active", True)
        fields.setdefault("lotsize", 110.0)
        fields.setdefault("leverage", 1)
        return await self._add(ApiKey(user_id=user.id, **fields))

    async def signal(self, **fields):
        from signal_engine.models import Signal

        fields.setdefault("symbol", "BTC/USDT")
        fields.setdefault("direction", LONG)
        fields.setdefault("market", MARKET_FUTURES)
        fields.setdefault("entry_price", 110.0)
        fields.setdefault("stop_loss", 100.0)
        fields.setdefault("take_profit", 120.0)
        fields.setdefault("status", SIGNAL_PENDING)
        fields.setdefault("created_at", datetime.utcnow())
        return await self._add(Signal(**fields))

    async def user_signal(self, signal, user, api_key, **fields):
        from signal_engine.models import UserSignal

        fields.setdefault("lotsize", api_key.lotsize)
        fields.setdefault("leverage", api_key.leverage)
        fields.setdefault("symbol", signal.symbol)
        fields.setdefault("direction", signal.direction)
        fields.setdefault("sl", signal.stop_loss)
        fields.setdefault("tp", signal.take_profit)
        fields.setdefault("status", US_PENDING)
        return await self._add(
            UserSignal(signal_id=signal.id, user_id=user.id, api_id=api_key.id, **fields)
        )


@pytest.fixture
def factory(db_session):
    return Factory(db_session)
