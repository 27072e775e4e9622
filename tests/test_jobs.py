"""Tests for the Celery task wrappers (run eagerly, no broker)."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from creative_rotator.db.session import get_session_context
from creative_rotator.jobs.rotation_tasks import (
    enqueue_rotation,
    rotate_session_task,
    rotation_sweep_task,
    stats_sweep_task,
)
from creative_rotator.services import sessions as store
from creative_rotator.services.scheduler import SweepResult

CREATIVES = ["https://cdn/a.jpg", "https://cdn/b.jpg"]


def create_running_session(session_factory, account_id, campaign_id: int = 101):
    with get_session_context(session_factory) as db:
        model = store.create_session(
            db, account_id, campaign_id, 555, CREATIVES, views_per_step=1000
        )
        return model.id


class TestRotateSessionTask:
    def test_rotates_by_session_id(
        self, rotation_service, marketplace, account_id, session_factory
    ) -> None:
        session_id = create_running_session(session_factory, account_id)
        marketplace.impressions[101] = 1000

        with patch(
            "creative_rotator.jobs.rotation_tasks.RotationService",
            return_value=rotation_service,
        ):
            result = rotate_session_task.apply(kwargs={"session_id": str(session_id)}).get()

        assert result["success"] is True
        assert result["outcome"] == "rotated"
        assert result["to_step"] == 1
        assert marketplace.primary_images[555] == CREATIVES[1]

    def test_resolves_by_account_and_campaign(
        self, rotation_service, marketplace, account_id, session_factory
    ) -> None:
        session_id = create_running_session(session_factory, account_id)
        marketplace.impressions[101] = 10

        with patch(
            "creative_rotator.jobs.rotation_tasks.RotationService",
            return_value=rotation_service,
        ):
            result = rotate_session_task.apply(
                kwargs={"account_id": str(account_id), "campaign_id": 101}
            ).get()

        assert result["session_id"] == str(session_id)
        assert result["outcome"] == "unchanged"

    def test_requires_an_identifier(self, rotation_service) -> None:
        with patch(
            "creative_rotator.jobs.rotation_tasks.RotationService",
            return_value=rotation_service,
        ):
            result = rotate_session_task.apply(kwargs={}).get()

        assert result["success"] is False

    def test_unknown_campaign(self, rotation_service, account_id) -> None:
        with patch(
            "creative_rotator.jobs.rotation_tasks.RotationService",
            return_value=rotation_service,
        ):
            result = rotate_session_task.apply(
                kwargs={"account_id": str(account_id), "campaign_id": 999}
            ).get()

        assert result["success"] is False
        assert "No active rotation session" in result["error"]

    def test_invalid_session_id(self, rotation_service) -> None:
        with patch(
            "creative_rotator.jobs.rotation_tasks.RotationService",
            return_value=rotation_service,
        ):
            result = rotate_session_task.apply(kwargs={"session_id": "nope"}).get()

        assert result["success"] is False


class TestEnqueueRotation:
    def test_enqueue_passes_string_ids(self) -> None:
        session_id = uuid4()

        with patch.object(rotate_session_task, "apply_async") as apply_async:
            enqueue_rotation(session_id=session_id, countdown=5)

        apply_async.assert_called_once_with(
            kwargs={"session_id": str(session_id), "account_id": None, "campaign_id": None},
            countdown=5,
        )


class TestSweepTasks:
    def test_rotation_sweep_task(self) -> None:
        scheduler = MagicMock()
        scheduler.run_rotation_sweep = AsyncMock(return_value=SweepResult(due=3, rotated=1))

        with patch(
            "creative_rotator.jobs.rotation_tasks.RotationScheduler", return_value=scheduler
        ):
            result = rotation_sweep_task.apply().get()

        assert result["success"] is True
        assert result["due"] == 3
        assert result["rotated"] == 1

    def test_stats_sweep_task(self) -> None:
        scheduler = MagicMock()
        scheduler.run_stats_sweep = AsyncMock(
            return_value={"campaigns": 1, "collected": 1, "rows": 2, "errors": 0}
        )

        with patch(
            "creative_rotator.jobs.rotation_tasks.RotationScheduler", return_value=scheduler
        ):
            result = stats_sweep_task.apply().get()

        assert result["rows"] == 2
