"""Analytics report flow: create, poll until ready, download.

Polling is bounded by a wall-clock ceiling; running out of time returns a
``TIMEOUT`` outcome instead of blocking the worker.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.config import settings
from creative_rotator.domain.enums import ReportStatus
from creative_rotator.domain.errors import ExternalServiceError
from creative_rotator.logging import get_logger
from creative_rotator.services.resilience import ResilientCaller

logger = get_logger(__name__)

DONE_STATUSES = frozenset({"DONE", "READY", "COMPLETED", "SUCCESS"})
FAILED_STATUSES = frozenset({"FAILED", "ERROR", "CANCELED", "CANCELLED"})


@dataclass
class ReportOutcome:
    """Final state of a report request."""

    status: ReportStatus
    report_id: str | None = None
    content: bytes | None = None
    polls: int = 0
    provider_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "report_id": self.report_id,
            "size_bytes": len(self.content) if self.content is not None else None,
            "polls": self.polls,
            "provider_status": self.provider_status,
        }


def _unwrap(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict) and isinstance(raw.get("data"), dict):
        return raw["data"]
    return raw if isinstance(raw, dict) else {}


def extract_report_id(raw: Any) -> str | None:
    payload = _unwrap(raw)
    for key in ("id", "reportId", "downloadId"):
        if payload.get(key):
            return str(payload[key])
    return None


def extract_report_status(raw: Any) -> str | None:
    status = _unwrap(raw).get("status")
    return str(status).upper() if status is not None else None


class ReportService:
    """Drives a report from creation to download."""

    def __init__(
        self,
        caller: ResilientCaller | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.caller = caller or ResilientCaller()
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.report_poll_interval_seconds
        )
        self.timeout = timeout if timeout is not None else settings.report_poll_timeout_seconds
        self._sleep = sleep
        self._monotonic = monotonic

    async def fetch_report(
        self, adapter: MarketplaceAdapter, body: dict[str, Any]
    ) -> ReportOutcome:
        """Create a report and wait for it.

        Raises:
            ProviderError: A create, status or download call failed.
        """
        created = await self.caller.call(
            lambda: adapter.create_analytics_report(body),
            operation="create_analytics_report",
        )
        report_id = extract_report_id(created)
        if report_id is None:
            raise ExternalServiceError("Report creation response carried no report id")

        log = logger.bind(report_id=report_id)
        log.info("analytics_report_created")

        deadline = self._monotonic() + self.timeout
        polls = 0
        while True:
            raw = await self.caller.call(
                lambda: adapter.get_analytics_report_status(report_id),
                operation="get_analytics_report_status",
            )
            polls += 1
            status = extract_report_status(raw)

            if status in DONE_STATUSES:
                content = await self.caller.call(
                    lambda: adapter.download_analytics_report(report_id),
                    operation="download_analytics_report",
                )
                log.info("analytics_report_downloaded", polls=polls, size_bytes=len(content))
                return ReportOutcome(ReportStatus.READY, report_id, content, polls, status)

            if status in FAILED_STATUSES:
                log.warning("analytics_report_failed", polls=polls, provider_status=status)
                return ReportOutcome(ReportStatus.FAILED, report_id, None, polls, status)

            if self._monotonic() + self.poll_interval > deadline:
                log.warning("analytics_report_timeout", polls=polls, provider_status=status)
                return ReportOutcome(ReportStatus.TIMEOUT, report_id, None, polls, status)

            await self._sleep(self.poll_interval)
