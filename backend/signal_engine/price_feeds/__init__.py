"""
Price Feeds

Current-price sources consumed by signal watchers and the paper trading client.
"""

from signal_engine.price_feeds.base import PriceFeed
from signal_engine.price_feeds.ccxt_feed import CcxtPriceFeed

__all__ = ["PriceFeed", "CcxtPriceFeed"]
