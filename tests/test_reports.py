"""Tests for the analytics report flow."""

import pytest

from creative_rotator.adapters.marketplace.stub import http_error
from creative_rotator.domain.enums import ReportStatus
from creative_rotator.domain.errors import ExternalServiceError
from creative_rotator.services.reports import (
    ReportService,
    extract_report_id,
    extract_report_status,
)
from creative_rotator.services.resilience import ResilientCaller


class FakeMonotonic:
    """Clock that advances whenever the service sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture
def fake_time() -> FakeMonotonic:
    return FakeMonotonic()


def make_service(fake_time: FakeMonotonic, timeout: float = 10.0) -> ReportService:
    return ReportService(
        caller=ResilientCaller(max_attempts=1),
        poll_interval=2.0,
        timeout=timeout,
        sleep=fake_time.sleep,
        monotonic=fake_time,
    )


class TestExtractors:
    def test_report_id_shapes(self) -> None:
        assert extract_report_id({"data": {"id": "r1"}}) == "r1"
        assert extract_report_id({"reportId": 7}) == "7"
        assert extract_report_id({"data": {}}) is None
        assert extract_report_id(None) is None

    def test_status_is_upper_cased(self) -> None:
        assert extract_report_status({"data": {"status": "done"}}) == "DONE"
        assert extract_report_status({}) is None


class TestReportService:
    @pytest.mark.asyncio
    async def test_ready_after_polling(self, marketplace, fake_time) -> None:
        marketplace.report_statuses = ["WAITING", "PROCESSING", "DONE"]

        outcome = await make_service(fake_time).fetch_report(marketplace, {"type": "stats"})

        assert outcome.status == ReportStatus.READY
        assert outcome.content == b"stub-report"
        assert outcome.polls == 3
        assert fake_time.sleeps == [2.0, 2.0]
        assert outcome.to_dict()["size_bytes"] == len(b"stub-report")

    @pytest.mark.asyncio
    async def test_failed_report(self, marketplace, fake_time) -> None:
        marketplace.report_statuses = ["FAILED"]

        outcome = await make_service(fake_time).fetch_report(marketplace, {})

        assert outcome.status == ReportStatus.FAILED
        assert outcome.content is None
        assert outcome.provider_status == "FAILED"

    @pytest.mark.asyncio
    async def test_times_out(self, marketplace, fake_time) -> None:
        marketplace.report_statuses = ["PROCESSING"]

        outcome = await make_service(fake_time, timeout=5.0).fetch_report(marketplace, {})

        assert outcome.status == ReportStatus.TIMEOUT
        assert outcome.polls == 3
        assert fake_time.now <= 5.0

    @pytest.mark.asyncio
    async def test_create_failure_raises(self, marketplace, fake_time) -> None:
        marketplace.fail_next("report", http_error(500))

        with pytest.raises(ExternalServiceError):
            await make_service(fake_time).fetch_report(marketplace, {})
