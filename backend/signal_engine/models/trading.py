"""Trading models: exchange api keys, signals and per-user executions."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from signal_engine.constants import MARKET_FUTURES, SIGNAL_PENDING, US_PENDING
from signal_engine.database import Base


class ApiKey(Base):
    """
    Exchange credentials for one user account.

    Owned by the account-management surface; read-only to the engine.
    Trade sizing (lotsize, leverage, strategy) lives on the key so one user
    can run different sizes on different accounts.
    """
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=True)  # User-friendly label
    exchange = Column(String, nullable=False)  # ccxt exchange id ("binance", "bybit") or "paper"
    market = Column(String, default=MARKET_FUTURES, nullable=False)  # "spot" or "futures"
    api_key = Column(String, nullable=True)
    api_secret = Column(String, nullable=True)  # Fernet-encrypted
    is_active = Column(Boolean, default=True)
    is_testnet = Column(Boolean, default=False)

    lotsize = Column(Float, default=10.0)  # Margin per trade in quote currency
    leverage = Column(Integer, default=1)
    strategy = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="api_keys")


class Signal(Base):
    """
    A proposed trade broadcast to subscribers.

    symbol/direction/prices are fixed at creation. status, result and the
    lifecycle timestamps are written only by the signal's SignalWatcher;
    dispatched only by the SignalDispatcher; cancel_requested only by the
    outer (bot/dashboard) surface.
    """
    __tablename__ = "signals"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String, nullable=False, index=True)  # ccxt unified symbol, e.g. "BTC/USDT"
    direction = Column(String, nullable=False)  # "LONG" or "SHORT"
    market = Column(String, default=MARKET_FUTURES, nullable=False)
    entry_price = Column(Float, nullable=True)  # NULL = enter at market
    stop_loss = Column(Float, nullable=False)
    take_profit = Column(Float, nullable=False)

    status = Column(String, default=SIGNAL_PENDING, nullable=False, index=True)
    result = Column(String, nullable=True)  # tp, sl, expired, invalidated, admin
    close_price = Column(Float, nullable=True)

    dispatched = Column(Boolean, default=False, nullable=False, index=True)
    cancel_requested = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    activated_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    user_signals = relationship("UserSignal", back_populates="signal")


class UserSignal(Base):
    """
    One user's execution of a Signal on one of their exchange accounts.

    Never deleted: terminal states are status codes (see constants.US_*).
    Every field except close_requested is written only by the row's
    PositionWatcher.
    """
    __tablename__ = "user_signals"
    __table_args__ = (
        UniqueConstraint("signal_id", "user_id", "api_id", name="uq_user_signal_fanout"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    signal_id = Column(Integer, ForeignKey("signals.id"), nullable=False, index=True)
    api_id = Column(Integer, ForeignKey("api_keys.id"), nullable=False)

    # Sizing frozen from the api key at fan-out time
    lotsize = Column(Float, nullable=False)
    leverage = Column(Integer, default=1)
    strategy = Column(String, nullable=True)

    # Exchange order ids; set only once the exchange has confirmed the order
    ticket = Column(String, nullable=True)  # Entry order
    sticket = Column(String, nullable=True)  # Stop-loss order
    tticket = Column(String, nullable=True)  # Take-profit order

    symbol = Column(String, nullable=False)
    direction = Column(String, nullable=False)

    open_price = Column(Float, nullable=True)
    opened_at = Column(DateTime, nullable=True)
    volume = Column(Float, default=0.0)  # Requested (filled entry) volume
    closed_volume = Column(Float, default=0.0)
    sl = Column(Float, nullable=True)
    tp = Column(Float, nullable=True)
    close_price = Column(Float, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    profit = Column(Float, nullable=True)  # Percentage
    profit_usdt = Column(Float, nullable=True)  # Quote currency

    event = Column(Text, nullable=True)  # Append-only event notes
    status = Column(Integer, default=US_PENDING, nullable=False, index=True)

    # True while a protective order was requested but not yet confirmed
    sl_wait = Column(Boolean, default=False, nullable=False)
    tp_wait = Column(Boolean, default=False, nullable=False)
    # Bumped each time a protective order must be re-placed, so the new order gets a fresh client id
    sl_seq = Column(Integer, default=0, nullable=False)
    tp_seq = Column(Integer, default=0, nullable=False)

    # Set by the bot/dashboard to ask the watcher to close at market
    close_requested = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    signal = relationship("Signal", back_populates="user_signals")


class PaperOrder(Base):
    """
    Simulated exchange order for paper trading api keys.

    Persisted so a paper account keeps its order book across restarts,
    exactly like a real exchange would.
    """
    __tablename__ = "paper_orders"
    __table_args__ = (
        UniqueConstraint("api_id", "client_order_id", name="uq_paper_order_client_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    api_id = Column(Integer, ForeignKey("api_keys.id"), nullable=False, index=True)
    client_order_id = Column(String, nullable=True)
    symbol = Column(String, nullable=False)
    side = Column(String, nullable=False)  # buy / sell
    order_kind = Column(String, nullable=False)  # limit / market / stop / take_profit
    volume = Column(Float, nullable=False)
    price = Column(Float, nullable=True)  # Limit or trigger price
    status = Column(String, default="pending", nullable=False)  # pending / filled / cancelled
    filled_volume = Column(Float, default=0.0)
    average_price = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    filled_at = Column(DateTime, nullable=True)
