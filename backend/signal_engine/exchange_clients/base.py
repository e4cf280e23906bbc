"""
ExchangeClient Abstract Base Class

This module defines the interface every exchange adapter must implement.
Watchers depend only on this interface, so a UserSignal can be executed on
any venue (real ccxt exchange or simulated paper account) without changes
to the lifecycle engine.

Error contract:
- ExchangeUnavailableError: network failure, timeout, rate limit. Safe to retry.
- OrderRejectedError: the exchange refused the order (bad symbol, funds, size).
- InvalidCredentialsError: the API key / session is unusable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from signal_engine.constants import ORDER_FILLED, ORDER_LIMIT, ORDER_PENDING


@dataclass
class OrderResult:
    """Confirmation returned by place_order once the exchange accepted the order."""
    ticket: str  # Exchange order id
    status: str = ORDER_PENDING  # filled / pending / cancelled
    filled_volume: float = 0.0
    average_price: Optional[float] = None
    client_order_id: Optional[str] = None

    @property
    def is_filled(self) -> bool:
        return self.status == ORDER_FILLED


@dataclass
class OrderStatusInfo:
    """Exchange-reported truth about one order."""
    state: str  # filled / cancelled / pending / missing
    ticket: Optional[str] = None
    filled_volume: float = 0.0
    average_price: Optional[float] = None


@dataclass
class MarketPrecision:
    """Decimal places the exchange accepts for a symbol (None = unknown)."""
    price: Optional[int] = None
    amount: Optional[int] = None


class ExchangeClient(ABC):
    """
    Abstract base class for all exchange adapters.

    Design Philosophy:
    - All prices and volumes are floats, already rounded by the caller
    - Sides are lowercase "buy" / "sell"
    - Order ids are exchange-specific strings ("tickets")
    - client_order_id lets the engine ask about an order it never saw
      confirmed, which is what makes placement idempotent across crashes
    """

    exchange_name: str = "unknown"

    @abstractmethod
    async def place_order(
        self,
        symbol: str,
        side: str,
        volume: float,
        price: Optional[float] = None,
        order_kind: str = ORDER_LIMIT,
        client_order_id: Optional[str] = None,
    ) -> OrderResult:
        """
        Place an order.

        Args:
            symbol: Unified symbol (e.g. "BTC/USDT")
            side: "buy" or "sell"
            volume: Base-currency amount
            price: Limit price, or trigger price for stop / take_profit orders.
                   Ignored for market orders.
            order_kind: "limit", "market", "stop" or "take_profit"
            client_order_id: Caller-chosen id the exchange stores with the order

        Returns:
            OrderResult with the exchange ticket
        """
        pass

    @abstractmethod
    async def get_order_status(
        self,
        symbol: str,
        ticket: Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> OrderStatusInfo:
        """
        Look up an order by exchange ticket or by client order id.

        Returns state "missing" when the exchange has no such order.
        """
        pass

    @abstractmethod
    async def cancel_order(self, symbol: str, ticket: str) -> bool:
        """
        Cancel an order.

        Returns:
            True if the order is now cancelled, False if it could not be
            cancelled because it already filled or no longer exists.
        """
        pass

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Current last-trade price for a symbol."""
        pass

    @abstractmethod
    async def get_market_precision(self, symbol: str) -> MarketPrecision:
        """Price and amount precision (decimal places) for a symbol."""
        pass

    async def close(self):
        """Release network resources. Default: nothing to release."""
        return None
