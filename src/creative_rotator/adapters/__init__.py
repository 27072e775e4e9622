"""Adapters for external services."""

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter

__all__ = ["MarketplaceAdapter"]
