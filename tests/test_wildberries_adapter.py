"""Tests for the Wildberries adapter using httpx.MockTransport."""

import json
from datetime import date

import httpx
import pytest

from creative_rotator.adapters.marketplace.wildberries import WildberriesAdapter, normalize_token
from creative_rotator.domain.errors import ExternalServiceError
from creative_rotator.services.resilience import ResilientCaller


class RecordingHandler:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={})


def make_adapter(handler: RecordingHandler, token: str = "wb-token") -> WildberriesAdapter:
    return WildberriesAdapter(
        api_token=token,
        advert_base_url="https://advert.test",
        content_base_url="https://content.test/",
        analytics_base_url="https://analytics.test",
        transport=httpx.MockTransport(handler),
    )


class TestNormalizeToken:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("abc", "abc"),
            ("Bearer abc", "abc"),
            ("bearer   abc ", "abc"),
            ("  abc  ", "abc"),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize_token(raw) == expected


class TestWildberriesAdapter:
    def test_name(self) -> None:
        assert make_adapter(RecordingHandler()).name == "wildberries"

    @pytest.mark.asyncio
    async def test_fetch_campaign_stats(self) -> None:
        payload = [{"advertId": 101, "days": [{"date": "2026-10-19", "views": 42}]}]
        handler = RecordingHandler(httpx.Response(200, json=payload))
        adapter = make_adapter(handler, token="Bearer secret")

        result = await adapter.fetch_campaign_stats(101, date(2026, 10, 1), date(2026, 10, 19))
        await adapter.close()

        assert result == payload
        request = handler.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/adv/v3/fullstats"
        assert request.url.params["ids"] == "101"
        assert request.url.params["beginDate"] == "2026-10-01"
        assert request.url.params["endDate"] == "2026-10-19"
        assert request.headers["Authorization"] == "secret"

    @pytest.mark.asyncio
    async def test_set_primary_image_uploads_into_slot_one(self) -> None:
        handler = RecordingHandler(
            httpx.Response(200, content=b"jpeg-bytes", headers={"Content-Type": "image/jpeg"}),
            httpx.Response(200, json={"data": None, "error": False}),
        )
        adapter = make_adapter(handler, token="Bearer secret")

        await adapter.set_primary_image(555, "https://cdn.test/creatives/b.jpg")
        await adapter.close()

        download, upload = handler.requests
        assert str(download.url) == "https://cdn.test/creatives/b.jpg"
        assert "Authorization" not in download.headers
        assert str(upload.url) == "https://content.test/content/v3/media/file"
        assert upload.headers["X-Nm-Id"] == "555"
        assert upload.headers["X-Photo-Number"] == "1"
        assert upload.headers["Authorization"] == "secret"
        assert upload.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="uploadfile"; filename="b.jpg"' in upload.content
        assert b"jpeg-bytes" in upload.content

    @pytest.mark.asyncio
    async def test_missing_creative_is_not_uploaded(self) -> None:
        handler = RecordingHandler(httpx.Response(404))
        adapter = make_adapter(handler)

        with pytest.raises(httpx.HTTPStatusError):
            await adapter.set_primary_image(555, "https://cdn.test/missing.jpg")
        await adapter.close()

        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_non_json_body_is_a_provider_error(self) -> None:
        handler = RecordingHandler(
            httpx.Response(
                200, content=b"<html>gateway</html>", headers={"Content-Type": "text/html"}
            )
        )
        adapter = make_adapter(handler)

        with pytest.raises(ExternalServiceError, match="invalid JSON") as exc_info:
            await adapter.fetch_campaign_stats(101, date(2026, 10, 1), date(2026, 10, 19))
        await adapter.close()

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_budget_read_and_deposit(self) -> None:
        handler = RecordingHandler(
            httpx.Response(200, json={"cash": 0, "netting": 0, "total": 300}),
            httpx.Response(204),
        )
        adapter = make_adapter(handler)

        budget = await adapter.get_campaign_budget(101)
        await adapter.deposit_budget(101, 5000)
        await adapter.close()

        assert budget["total"] == 300
        deposit = handler.requests[1]
        assert deposit.method == "POST"
        assert deposit.url.path == "/adv/v1/budget/deposit"
        assert deposit.url.params["id"] == "101"
        assert json.loads(deposit.content) == {"sum": 5000, "type": 1, "return": True}

    @pytest.mark.asyncio
    async def test_report_endpoints(self) -> None:
        handler = RecordingHandler(
            httpx.Response(200, json={"data": {"id": "rep-1"}}),
            httpx.Response(200, json={"data": {"id": "rep-1", "status": "DONE"}}),
            httpx.Response(200, content=b"zip-bytes"),
        )
        adapter = make_adapter(handler)

        created = await adapter.create_analytics_report({"reportType": "DETAIL_HISTORY_REPORT"})
        status = await adapter.get_analytics_report_status("rep-1")
        content = await adapter.download_analytics_report("rep-1")
        await adapter.close()

        assert created == {"data": {"id": "rep-1"}}
        assert status["data"]["status"] == "DONE"
        assert content == b"zip-bytes"
        assert handler.requests[2].url.path == "/api/analytics/v1/reports/rep-1/download"

    @pytest.mark.asyncio
    async def test_error_status_raises_for_the_caller(self) -> None:
        handler = RecordingHandler(httpx.Response(429, headers={"Retry-After": "1"}))
        adapter = make_adapter(handler)

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await adapter.get_campaign_budget(101)
        await adapter.close()

        assert exc_info.value.response.status_code == 429

    @pytest.mark.asyncio
    async def test_caller_maps_client_errors(self) -> None:
        handler = RecordingHandler(httpx.Response(400, json={"error": "bad nmId"}))
        adapter = make_adapter(handler)
        caller = ResilientCaller(max_attempts=3)

        with pytest.raises(ExternalServiceError) as exc_info:
            await caller.call(lambda: adapter.get_campaign_budget(1), operation="budget")
        await adapter.close()

        assert exc_info.value.status_code == 400
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        healthy = make_adapter(RecordingHandler(httpx.Response(200, json={"adverts": []})))
        unhealthy = make_adapter(RecordingHandler(httpx.Response(401)))

        assert await healthy.health_check() is True
        assert await unhealthy.health_check() is False

        await healthy.close()
        await unhealthy.close()
