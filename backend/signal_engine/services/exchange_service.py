"""
Exchange Service

Provides exchange clients for api keys stored in the database.
Supports per-user, per-account client instantiation, including paper trading.
"""

import asyncio
import logging
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from signal_engine.encryption import decrypt_value, is_encrypted
from signal_engine.exceptions import InvalidCredentialsError
from signal_engine.exchange_clients.base import ExchangeClient
from signal_engine.exchange_clients.factory import PAPER_EXCHANGE, create_exchange_client
from signal_engine.models import ApiKey
from signal_engine.price_feeds.base import PriceFeed

logger = logging.getLogger(__name__)


class ExchangeClientProvider:
    """
    Builds and caches one ExchangeClient per api key.

    The same cached client is handed to every watcher trading on that
    account; clients are safe for concurrent use.
    """

    def __init__(self, session_maker: async_sessionmaker, price_feed: PriceFeed):
        self.session_maker = session_maker
        self.price_feed = price_feed
        # Cache for exchange clients (key: api key id)
        self._cache: Dict[int, ExchangeClient] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    async def get(self, api_id: int, use_cache: bool = True) -> ExchangeClient:
        """
        Get an exchange client for a specific api key.

        Raises:
            InvalidCredentialsError: key missing, disabled, or without credentials
        """
        if use_cache and api_id in self._cache:
            return self._cache[api_id]

        # Watchers resumed together race for the same key; one builder per key
        async with self._locks.setdefault(api_id, asyncio.Lock()):
            if use_cache and api_id in self._cache:
                return self._cache[api_id]
            client = await self._build(api_id)
            self._cache[api_id] = client
            return client

    async def _build(self, api_id: int) -> ExchangeClient:
        async with self.session_maker() as db:
            api_key = await db.get(ApiKey, api_id)

        if api_key is None:
            raise InvalidCredentialsError(f"Api key {api_id} not found")
        if not api_key.is_active:
            raise InvalidCredentialsError(f"Api key {api_id} is disabled")

        if api_key.exchange == PAPER_EXCHANGE:
            logger.info(f"Creating paper trading client for api key {api_id}")
            client = create_exchange_client(
                exchange=PAPER_EXCHANGE,
                market=api_key.market,
                api_id=api_id,
                session_maker=self.session_maker,
                price_feed=self.price_feed,
            )
        else:
            if not api_key.api_key or not api_key.api_secret:
                raise InvalidCredentialsError(f"Api key {api_id} has no {api_key.exchange} credentials")
            secret = api_key.api_secret
            if is_encrypted(secret):
                secret = decrypt_value(secret)
            try:
                client = create_exchange_client(
                    exchange=api_key.exchange,
                    api_key=api_key.api_key,
                    api_secret=secret,
                    market=api_key.market,
                    testnet=bool(api_key.is_testnet),
                )
            except ValueError as e:
                raise InvalidCredentialsError(f"Api key {api_id}: {e}") from e
            logger.info(f"Created {api_key.exchange} client for api key {api_id}")

        return client

    async def clear(self, api_id: Optional[int] = None):
        """Drop cached clients (call when credentials change or a key is deleted)."""
        if api_id is not None:
            client = self._cache.pop(api_id, None)
            if client:
                await client.close()
            return
        clients = list(self._cache.values())
        self._cache.clear()
        for client in clients:
            await client.close()
