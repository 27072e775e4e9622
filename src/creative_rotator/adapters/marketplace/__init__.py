"""Marketplace adapters."""

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.adapters.marketplace.stub import StubMarketplaceAdapter
from creative_rotator.adapters.marketplace.wildberries import WildberriesAdapter

__all__ = [
    "MarketplaceAdapter",
    "StubMarketplaceAdapter",
    "WildberriesAdapter",
]
