"""Periodic sweeps driving rotation checks, stats collection and budget top-ups.

Sessions are handled one at a time with a pause between them so the
marketplace rate limiter is not tripped. One session's failure is logged
and the sweep moves on.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select

from creative_rotator.config import settings
from creative_rotator.db.models import RotationSessionModel
from creative_rotator.domain.enums import CheckTrigger, RotationOutcome, SessionStatus
from creative_rotator.logging import get_logger
from creative_rotator.services import sessions as store
from creative_rotator.services.campaign_stats import collect_campaign_stats
from creative_rotator.services.rotation import RotationService

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Counts of one rotation sweep."""

    due: int = 0
    rotated: int = 0
    completed: int = 0
    unchanged: int = 0
    skipped: int = 0
    superseded: int = 0
    failed: int = 0
    errors: int = 0

    def count(self, outcome: RotationOutcome) -> None:
        name = outcome.value
        setattr(self, name, getattr(self, name) + 1)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RotationScheduler:
    """Runs the sweeps; Celery beat and the CLI both call into it."""

    def __init__(
        self,
        service: RotationService | None = None,
        pause_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service or RotationService()
        self.pause_seconds = (
            pause_seconds if pause_seconds is not None else settings.sweep_pause_seconds
        )
        self._sleep = sleep

    async def _pace(self, index: int) -> None:
        if index > 0 and self.pause_seconds > 0:
            await self._sleep(self.pause_seconds)

    async def run_rotation_sweep(self, limit: int | None = None) -> SweepResult:
        """Check every running session whose next check time has come."""
        with self.service.transaction() as db:
            due_ids = store.list_due_session_ids(db, now=self.service.now(), limit=limit)

        result = SweepResult(due=len(due_ids))
        logger.info("rotation_sweep_started", due=len(due_ids))

        for index, session_id in enumerate(due_ids):
            await self._pace(index)
            try:
                check = await self.service.check_session(session_id, CheckTrigger.SCHEDULER)
                result.count(check.outcome)
            except Exception as e:
                result.errors += 1
                logger.exception(
                    "rotation_sweep_session_error",
                    session_id=str(session_id),
                    error=str(e),
                    error_class=type(e).__name__,
                )

        logger.info("rotation_sweep_finished", **result.to_dict())
        return result

    async def run_stats_sweep(self) -> dict[str, int]:
        """Upsert yesterday's and today's stats for every campaign under test."""
        with self.service.transaction() as db:
            campaigns = store.list_active_campaigns(db)

        today = self.service.now().date()
        yesterday = today - timedelta(days=1)
        collected = 0
        rows = 0
        errors = 0

        for index, (account_id, campaign_id) in enumerate(campaigns):
            await self._pace(index)
            try:
                rows += await self._collect(account_id, campaign_id, yesterday, today)
                collected += 1
            except Exception as e:
                errors += 1
                logger.error(
                    "stats_sweep_campaign_error",
                    account_id=str(account_id),
                    campaign_id=campaign_id,
                    error=str(e),
                    error_class=type(e).__name__,
                )

        result = {
            "campaigns": len(campaigns),
            "collected": collected,
            "rows": rows,
            "errors": errors,
        }
        logger.info("stats_sweep_finished", **result)
        return result

    async def _collect(
        self, account_id: UUID, campaign_id: int, date_from: date, date_to: date
    ) -> int:
        with self.service.transaction() as db:
            adapter = self.service.adapter_factory(db, account_id)
        try:
            return await collect_campaign_stats(
                adapter,
                account_id,
                campaign_id,
                date_from,
                date_to,
                aggregator=self.service.aggregator,
                session_factory=self.service.session_factory,
            )
        finally:
            await adapter.close()

    async def run_budget_sweep(self) -> dict[str, int]:
        """Top up budgets of running sessions with auto top-up enabled."""
        with self.service.transaction() as db:
            models = db.execute(
                select(RotationSessionModel).where(
                    RotationSessionModel.status == SessionStatus.RUNNING.value,
                    RotationSessionModel.auto_top_up.is_(True),
                )
            ).scalars().all()
            snapshots = [store.to_snapshot(m) for m in models]

        topped_up = 0
        errors = 0
        for index, snapshot in enumerate(snapshots):
            await self._pace(index)
            try:
                with self.service.transaction() as db:
                    adapter = self.service.adapter_factory(db, snapshot.account_id)
                try:
                    top_up = await self.service.budget_guard.maybe_top_up(adapter, snapshot)
                finally:
                    await adapter.close()
                if top_up is not None and top_up.topped_up:
                    topped_up += 1
            except Exception as e:
                errors += 1
                logger.error(
                    "budget_sweep_session_error",
                    session_id=str(snapshot.id),
                    error=str(e),
                    error_class=type(e).__name__,
                )

        result = {"checked": len(snapshots), "topped_up": topped_up, "errors": errors}
        logger.info("budget_sweep_finished", **result)
        return result
