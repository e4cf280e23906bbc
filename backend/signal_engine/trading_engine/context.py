"""
Shared services injected into every watcher and the dispatcher.

Watchers are rebuilt from a row id plus this context, nothing else, so they
can be freely torn down and reconstructed after a restart.
"""

from dataclasses import dataclass, field

from signal_engine.config import Settings
from signal_engine.price_feeds.base import PriceFeed
from signal_engine.services.exchange_service import ExchangeClientProvider
from signal_engine.services.notifier import NotificationQueue
from signal_engine.services.shutdown_manager import ShutdownManager, shutdown_manager
from signal_engine.store import Store


@dataclass
class EngineContext:
    store: Store
    exchanges: ExchangeClientProvider
    price_feed: PriceFeed
    notifications: NotificationQueue
    settings: Settings
    shutdown: ShutdownManager = field(default_factory=lambda: shutdown_manager)
