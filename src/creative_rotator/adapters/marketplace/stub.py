"""Stub marketplace adapter for testing and local runs."""

import asyncio
from collections import defaultdict
from datetime import date
from typing import Any
from uuid import uuid4

import httpx

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.logging import get_logger

logger = get_logger(__name__)

_STUB_URL = "https://stub.marketplace.local"


def http_error(status_code: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    """Build the error an httpx client raises for a given status code."""
    request = httpx.Request("GET", _STUB_URL)
    response = httpx.Response(status_code, headers=headers, request=request)
    return httpx.HTTPStatusError(
        f"Stub marketplace returned {status_code}", request=request, response=response
    )


class StubMarketplaceAdapter(MarketplaceAdapter):
    """In-memory marketplace.

    State is plain attributes so tests can script the provider:

    - ``impressions[campaign_id]``: total impressions reported for a campaign
    - ``budgets[campaign_id]``: remaining budget
    - ``failures[operation]``: queue of exceptions raised by the next calls
      to ``operation`` (``"stats"``, ``"swap"``, ``"budget"``, ``"deposit"``,
      ``"report"``)
    - ``report_statuses``: statuses returned by successive status polls
    """

    def __init__(self) -> None:
        self.impressions: dict[int, int] = defaultdict(int)
        self.clicks: dict[int, int] = defaultdict(int)
        self.budgets: dict[int, int] = defaultdict(int)
        self.primary_images: dict[int, str] = {}
        self.swaps: list[tuple[int, str]] = []
        self.deposits: list[tuple[int, int]] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.report_statuses: list[str] = ["DONE"]
        self.calls: dict[str, int] = defaultdict(int)
        self.closed = False

    @property
    def name(self) -> str:
        return "stub"

    def fail_next(self, operation: str, *errors: Exception) -> None:
        """Queue exceptions for the next calls of ``operation``."""
        self.failures[operation].extend(errors)

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        # Yield so concurrent callers interleave like real network calls
        await asyncio.sleep(0)
        if self.failures[operation]:
            raise self.failures[operation].pop(0)

    async def fetch_campaign_stats(
        self,
        campaign_id: int,
        date_from: date,
        date_to: date,
    ) -> Any:
        await self._enter("stats")
        logger.debug("stub_fetch_campaign_stats", campaign_id=campaign_id)
        return [
            {
                "advertId": campaign_id,
                "days": [
                    {
                        "date": date_to.isoformat(),
                        "views": self.impressions[campaign_id],
                        "clicks": self.clicks[campaign_id],
                        "orders": 0,
                        "sum": 0,
                    }
                ],
            }
        ]

    async def set_primary_image(self, listing_id: int, image_ref: str) -> None:
        await self._enter("swap")
        self.primary_images[listing_id] = image_ref
        self.swaps.append((listing_id, image_ref))
        logger.debug("stub_primary_image_set", listing_id=listing_id, image_ref=image_ref)

    async def get_campaign_budget(self, campaign_id: int) -> Any:
        await self._enter("budget")
        return {"total": self.budgets[campaign_id]}

    async def deposit_budget(self, campaign_id: int, amount: int) -> None:
        await self._enter("deposit")
        self.budgets[campaign_id] += amount
        self.deposits.append((campaign_id, amount))

    async def create_analytics_report(self, body: dict[str, Any]) -> Any:
        await self._enter("report")
        return {"data": {"id": str(uuid4())}}

    async def get_analytics_report_status(self, report_id: str) -> Any:
        await self._enter("report")
        # The last scripted status sticks
        if len(self.report_statuses) > 1:
            status = self.report_statuses.pop(0)
        else:
            status = self.report_statuses[0]
        return {"data": {"id": report_id, "status": status}}

    async def download_analytics_report(self, report_id: str) -> bytes:
        await self._enter("report")
        return b"stub-report"

    async def close(self) -> None:
        self.closed = True
