"""
Base Price Feed Interface

Defines the abstract interface that all price feed implementations must follow.
Signal watchers and the paper trading client read prices only through it.
"""

from abc import ABC, abstractmethod


class PriceFeed(ABC):
    """
    Source of current market prices.

    Implementations raise ExchangeUnavailableError when the price can't be
    fetched right now; callers treat that as "no data this tick".
    """

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Last traded price for a unified symbol (e.g. "BTC/USDT")."""
        pass

    async def close(self):
        return None
