"""Base interface for marketplace (promotion, content, analytics) adapters."""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any


class MarketplaceAdapter(ABC):
    """Abstract base class for marketplace API adapters.

    Every call returns the provider's raw JSON; normalization lives in the
    services. Failed calls raise ``httpx.HTTPStatusError`` (non-2xx) or
    ``httpx.RequestError`` (transport) so the resilient caller can tell
    rate limiting apart from other failures.

    Implementations:
    - StubMarketplaceAdapter: In-memory marketplace for tests and local runs
    - WildberriesAdapter: Wildberries seller APIs over httpx
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name used in logs."""
        ...

    @abstractmethod
    async def fetch_campaign_stats(
        self,
        campaign_id: int,
        date_from: date,
        date_to: date,
    ) -> Any:
        """Fetch daily statistics for a campaign over an inclusive date range."""
        ...

    @abstractmethod
    async def set_primary_image(self, listing_id: int, image_ref: str) -> None:
        """Make ``image_ref`` the main photo of a listing."""
        ...

    @abstractmethod
    async def get_campaign_budget(self, campaign_id: int) -> Any:
        """Fetch the remaining budget of a campaign."""
        ...

    @abstractmethod
    async def deposit_budget(self, campaign_id: int, amount: int) -> None:
        """Add ``amount`` to a campaign's budget."""
        ...

    @abstractmethod
    async def create_analytics_report(self, body: dict[str, Any]) -> Any:
        """Request generation of an analytics report; returns the provider response."""
        ...

    @abstractmethod
    async def get_analytics_report_status(self, report_id: str) -> Any:
        """Fetch the processing status of a requested report."""
        ...

    @abstractmethod
    async def download_analytics_report(self, report_id: str) -> bytes:
        """Download a finished report."""
        ...

    async def health_check(self) -> bool:
        """Check if the marketplace API is reachable.

        Returns:
            True if API is accessible, False otherwise
        """
        return True

    async def close(self) -> None:
        """Release network resources held by the adapter."""
        return None
