"""
Exchange Client Abstraction Layer

All exchange adapters implement the ExchangeClient abstract base class, so
position watchers work the same against any venue.

Supported variants:
- ccxt venues (Binance, Bybit, OKX, ...) via CcxtExchangeClient
- simulated accounts via PaperTradingClient

Usage:
    from signal_engine.exchange_clients.factory import create_exchange_client

    exchange = create_exchange_client(
        exchange="binance",
        api_key="...",
        api_secret="...",
        market="futures",
    )
"""

from signal_engine.exchange_clients.base import (
    ExchangeClient,
    MarketPrecision,
    OrderResult,
    OrderStatusInfo,
)

__all__ = ["ExchangeClient", "MarketPrecision", "OrderResult", "OrderStatusInfo"]
