"""
Exchange Client Factory

Decides which ExchangeClient variant backs an api key:
- "paper" -> PaperTradingClient (simulated fills, real prices)
- any ccxt exchange id -> CcxtExchangeClient

This centralizes exchange client creation and makes it easy to add new venues.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from signal_engine.constants import MARKET_FUTURES
from signal_engine.exchange_clients.base import ExchangeClient
from signal_engine.exchange_clients.ccxt_adapter import CcxtExchangeClient
from signal_engine.exchange_clients.paper_trading_client import PaperTradingClient
from signal_engine.price_feeds.base import PriceFeed

PAPER_EXCHANGE = "paper"


def create_exchange_client(
    exchange: str,
    api_key: Optional[str] = None,
    api_secret: Optional[str] = None,
    market: str = MARKET_FUTURES,
    testnet: bool = False,
    # Paper trading parameters
    api_id: Optional[int] = None,
    session_maker: Optional[async_sessionmaker] = None,
    price_feed: Optional[PriceFeed] = None,
) -> ExchangeClient:
    """
    Factory function to create the appropriate exchange client.

    Args:
        exchange: "paper" or a ccxt exchange id ("binance", "bybit", ...)
        api_key / api_secret: decrypted credentials (ccxt venues)
        market: "spot" or "futures"
        testnet: use the venue's sandbox
        api_id / session_maker / price_feed: required for paper trading

    Raises:
        ValueError: if required parameters are missing or the exchange is unknown
    """
    if not exchange:
        raise ValueError("Exchange identifier is required")

    if exchange == PAPER_EXCHANGE:
        if api_id is None or session_maker is None or price_feed is None:
            raise ValueError("Paper trading requires api_id, session_maker and price_feed")
        return PaperTradingClient(api_id=api_id, session_maker=session_maker, price_feed=price_feed)

    if not api_key or not api_secret:
        raise ValueError(f"{exchange} requires api_key and api_secret")

    return CcxtExchangeClient(
        exchange_id=exchange,
        api_key=api_key,
        api_secret=api_secret,
        market=market,
        testnet=testnet,
    )
