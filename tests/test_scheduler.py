"""Tests for the periodic sweeps."""

from datetime import date

import pytest

from creative_rotator.db.session import get_session_context
from creative_rotator.domain.enums import RotationOutcome
from creative_rotator.services.campaign_stats import get_campaign_stats
from creative_rotator.services.scheduler import RotationScheduler, SweepResult

CREATIVES = ["https://cdn/a.jpg", "https://cdn/b.jpg"]


async def start(service, account_id, campaign_id: int, **kwargs):
    return await service.start_session(
        account_id,
        campaign_id,
        campaign_id * 10,
        CREATIVES,
        views_per_step=1000,
        **kwargs,
    )


@pytest.fixture
def scheduler(rotation_service, recording_sleep) -> RotationScheduler:
    return RotationScheduler(rotation_service, pause_seconds=1.5, sleep=recording_sleep)


class TestSweepResult:
    def test_count(self) -> None:
        result = SweepResult(due=2)
        result.count(RotationOutcome.ROTATED)
        result.count(RotationOutcome.SUPERSEDED)

        assert result.to_dict()["rotated"] == 1
        assert result.to_dict()["superseded"] == 1
        assert result.to_dict()["due"] == 2


class TestRotationSweep:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(
        self, scheduler, rotation_service, marketplace, account_id, recording_sleep
    ) -> None:
        broken = await start(rotation_service, account_id, 101)
        healthy = await start(rotation_service, account_id, 202)
        marketplace.impressions[202] = 1000

        check_session = rotation_service.check_session

        async def flaky_check(session_id, trigger):
            if session_id == broken.id:
                raise RuntimeError("database hiccup")
            return await check_session(session_id, trigger)

        rotation_service.check_session = flaky_check

        result = await scheduler.run_rotation_sweep()

        assert result.due == 2
        assert result.errors == 1
        assert result.rotated == 1
        assert recording_sleep.delays == [1.5]
        assert rotation_service.get_status(healthy.id).current_step == 1

    @pytest.mark.asyncio
    async def test_checked_session_waits_for_its_interval(
        self, scheduler, rotation_service, marketplace, account_id, clock
    ) -> None:
        await start(rotation_service, account_id, 101)
        marketplace.impressions[101] = 10

        first = await scheduler.run_rotation_sweep()
        second = await scheduler.run_rotation_sweep()
        clock.advance(minutes=11)
        third = await scheduler.run_rotation_sweep()

        assert (first.due, first.unchanged) == (1, 1)
        assert second.due == 0
        assert third.due == 1

    @pytest.mark.asyncio
    async def test_paused_sessions_are_not_due(
        self, scheduler, rotation_service, account_id
    ) -> None:
        snapshot = await start(rotation_service, account_id, 101)
        rotation_service.pause_session(snapshot.id)

        result = await scheduler.run_rotation_sweep()

        assert result.due == 0


class TestStatsSweep:
    @pytest.mark.asyncio
    async def test_collects_every_active_campaign(
        self, scheduler, rotation_service, marketplace, account_id, session_factory
    ) -> None:
        await start(rotation_service, account_id, 101)
        await start(rotation_service, account_id, 202)
        marketplace.impressions[101] = 300
        marketplace.impressions[202] = 700

        result = await scheduler.run_stats_sweep()

        assert result == {"campaigns": 2, "collected": 2, "rows": 2, "errors": 0}
        with get_session_context(session_factory) as db:
            summaries = get_campaign_stats(db, account_id, date(2026, 10, 18), date(2026, 10, 19))
        assert {s.campaign_id: s.impressions for s in summaries} == {101: 300, 202: 700}


class TestBudgetSweep:
    @pytest.mark.asyncio
    async def test_tops_up_only_opted_in_sessions(
        self, scheduler, rotation_service, marketplace, account_id
    ) -> None:
        await start(
            rotation_service,
            account_id,
            101,
            auto_top_up=True,
            top_up_threshold=1000,
            top_up_amount=2000,
        )
        await start(rotation_service, account_id, 202)
        marketplace.budgets[101] = 10
        marketplace.budgets[202] = 10

        result = await scheduler.run_budget_sweep()

        assert result == {"checked": 1, "topped_up": 1, "errors": 0}
        assert marketplace.deposits == [(101, 2000)]
