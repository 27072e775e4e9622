"""Wildberries seller API adapter (promotion, content and analytics APIs)."""

from datetime import date
from typing import Any

import httpx

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.config import settings
from creative_rotator.domain.errors import ExternalServiceError
from creative_rotator.logging import get_logger

logger = get_logger(__name__)


def normalize_token(token: str) -> str:
    """WB expects the raw token in Authorization, without a Bearer prefix."""
    token = token.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token


class WildberriesAdapter(MarketplaceAdapter):
    """Talks to the Wildberries seller APIs on behalf of one seller account.

    Uses three API hosts:
    - advert API for campaign statistics and budgets
    - content API for listing media
    - seller analytics API for report generation
    """

    def __init__(
        self,
        api_token: str,
        advert_base_url: str | None = None,
        content_base_url: str | None = None,
        analytics_base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            api_token: Seller API token (decrypted).
            advert_base_url: Override for the promotion API host.
            content_base_url: Override for the content API host.
            analytics_base_url: Override for the analytics API host.
            timeout: Per-request timeout in seconds.
            transport: Custom httpx transport (tests use ``httpx.MockTransport``).
        """
        self._token = normalize_token(api_token)
        self.advert_base_url = (advert_base_url or settings.wb_advert_api_url).rstrip("/")
        self.content_base_url = (content_base_url or settings.wb_content_api_url).rstrip("/")
        self.analytics_base_url = (
            analytics_base_url or settings.wb_analytics_api_url
        ).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "wildberries"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Authorization": self._token},
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request and raise ``httpx.HTTPStatusError`` on a non-2xx answer."""
        client = await self._get_client()
        response = await client.request(method, url, **kwargs)

        if response.is_error:
            logger.warning(
                "wb_api_error",
                method=method,
                url=url,
                status=response.status_code,
                body=response.text[:500],
            )
            response.raise_for_status()

        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Decode a JSON body; an empty body is None.

        Raises:
            ExternalServiceError: The body is not JSON (gateway page, truncated reply).
        """
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                "wb_invalid_json",
                url=str(response.request.url),
                status=response.status_code,
                body=response.text[:200],
            )
            raise ExternalServiceError(
                f"Wildberries {response.request.url.path} returned invalid JSON",
                status_code=response.status_code,
            ) from e

    async def fetch_campaign_stats(
        self,
        campaign_id: int,
        date_from: date,
        date_to: date,
    ) -> Any:
        response = await self._request(
            "GET",
            f"{self.advert_base_url}/adv/v3/fullstats",
            params={
                "ids": str(campaign_id),
                "beginDate": date_from.isoformat(),
                "endDate": date_to.isoformat(),
            },
        )
        return self._json(response)

    async def _download_creative(self, image_ref: str) -> tuple[str, bytes, str]:
        """Fetch a creative image; the seller token is not sent to the image host."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(image_ref)
            response.raise_for_status()

        filename = response.url.path.rsplit("/", 1)[-1] or "creative.jpg"
        content_type = response.headers.get("content-type", "image/jpeg")
        return filename, response.content, content_type

    async def set_primary_image(self, listing_id: int, image_ref: str) -> None:
        """Upload ``image_ref`` into photo slot 1 of the listing.

        Only the first photo is replaced; the rest of the card's media is kept.
        """
        filename, content, content_type = await self._download_creative(image_ref)
        await self._request(
            "POST",
            f"{self.content_base_url}/content/v3/media/file",
            files={"uploadfile": (filename, content, content_type)},
            headers={"X-Nm-Id": str(listing_id), "X-Photo-Number": "1"},
        )
        logger.info("wb_primary_image_set", listing_id=listing_id, image_ref=image_ref)

    async def get_campaign_budget(self, campaign_id: int) -> Any:
        response = await self._request(
            "GET",
            f"{self.advert_base_url}/adv/v1/budget",
            params={"id": campaign_id},
        )
        return self._json(response)

    async def deposit_budget(self, campaign_id: int, amount: int) -> None:
        await self._request(
            "POST",
            f"{self.advert_base_url}/adv/v1/budget/deposit",
            params={"id": campaign_id},
            json={"sum": amount, "type": 1, "return": True},
        )
        logger.info("wb_budget_deposited", campaign_id=campaign_id, amount=amount)

    async def create_analytics_report(self, body: dict[str, Any]) -> Any:
        response = await self._request(
            "POST",
            f"{self.analytics_base_url}/api/analytics/v1/reports",
            json=body,
        )
        return self._json(response)

    async def get_analytics_report_status(self, report_id: str) -> Any:
        response = await self._request(
            "GET",
            f"{self.analytics_base_url}/api/analytics/v1/reports/{report_id}",
        )
        return self._json(response)

    async def download_analytics_report(self, report_id: str) -> bytes:
        response = await self._request(
            "GET",
            f"{self.analytics_base_url}/api/analytics/v1/reports/{report_id}/download",
        )
        return response.content

    async def health_check(self) -> bool:
        try:
            await self._request("GET", f"{self.advert_base_url}/adv/v1/promotion/count")
            return True
        except httpx.HTTPError as e:
            logger.warning("wb_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
