"""
ccxt Public Price Feed

Reads tickers from a public (unauthenticated) ccxt exchange instance, with a
short per-symbol cache so many watchers on the same symbol share one request.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import ccxt.async_support as ccxt_async
from ccxt.base import errors as ccxt_errors

from signal_engine.constants import MARKET_FUTURES
from signal_engine.exceptions import ExchangeUnavailableError
from signal_engine.price_feeds.base import PriceFeed

logger = logging.getLogger(__name__)


class CcxtPriceFeed(PriceFeed):
    """PriceFeed backed by a public ccxt exchange."""

    def __init__(
        self,
        exchange_id: str = "binance",
        market: str = MARKET_FUTURES,
        cache_seconds: float = 1.0,
        exchange: Optional[Any] = None,
    ):
        self.exchange_id = exchange_id
        self.cache_seconds = cache_seconds
        self._cache: Dict[str, Tuple[float, float]] = {}  # symbol -> (price, fetched_at)
        if exchange is not None:
            self.exchange = exchange
        else:
            exchange_class = getattr(ccxt_async, exchange_id, None)
            if exchange_class is None:
                raise ValueError(f"Unknown ccxt exchange: {exchange_id}")
            self.exchange = exchange_class({
                "enableRateLimit": True,
                "options": {"defaultType": "future" if market == MARKET_FUTURES else "spot"},
            })

    async def get_price(self, symbol: str) -> float:
        cached = self._cache.get(symbol)
        now = time.monotonic()
        if cached and now - cached[1] < self.cache_seconds:
            return cached[0]

        try:
            ticker = await self.exchange.fetch_ticker(symbol)
        except ccxt_errors.BaseError as e:
            raise ExchangeUnavailableError(f"{self.exchange_id} ticker {symbol}: {e}") from e

        last = ticker.get("last") or ticker.get("close")
        if last is None:
            raise ExchangeUnavailableError(f"{self.exchange_id} ticker for {symbol} has no price")
        price = float(last)
        self._cache[symbol] = (price, now)
        return price

    async def close(self):
        try:
            await self.exchange.close()
        except Exception as e:
            logger.warning(f"Error closing {self.exchange_id} price feed: {e}")
