"""Celery tasks for creative rotation, stats collection and budget top-ups.

Every task is a thin wrapper: it resolves arguments, runs the matching
service coroutine through ``run_async`` and returns a JSON-able dict.
"""

import base64
from datetime import date
from typing import Any
from uuid import UUID

from celery.result import AsyncResult

from creative_rotator.db.session import get_session_context
from creative_rotator.domain.enums import CheckTrigger
from creative_rotator.domain.errors import RotationError
from creative_rotator.logging import bind_log_context, clear_log_context, get_logger
from creative_rotator.services.accounts import build_marketplace_adapter
from creative_rotator.services.campaign_stats import collect_campaign_stats
from creative_rotator.services.reports import ReportService
from creative_rotator.services.rotation import RotationService
from creative_rotator.services.scheduler import RotationScheduler
from creative_rotator.utils import run_async
from creative_rotator.worker import celery_app

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    name="rotation.rotate_session",
    acks_late=True,
)
def rotate_session_task(
    self: Any,
    session_id: str | None = None,
    account_id: str | None = None,
    campaign_id: int | None = None,
) -> dict[str, Any]:
    """Check one session, identified by id or by account and campaign.

    Redelivery after a worker crash is safe: a repeated check either finds
    nothing new or loses the conditional write and reports ``superseded``.

    Args:
        session_id: Session UUID string
        account_id: Account UUID string, used with campaign_id
        campaign_id: Marketplace campaign id, used with account_id

    Returns:
        Dict with the check outcome
    """
    bind_log_context(task_id=self.request.id)
    try:
        return _rotate_session(session_id, account_id, campaign_id)
    finally:
        clear_log_context()


def _rotate_session(
    session_id: str | None,
    account_id: str | None,
    campaign_id: int | None,
) -> dict[str, Any]:
    logger.info(
        "rotate_session_task_started",
        session_id=session_id,
        account_id=account_id,
        campaign_id=campaign_id,
    )

    service = RotationService()
    try:
        if session_id is not None:
            session_uuid = UUID(session_id)
        elif account_id is not None and campaign_id is not None:
            session_uuid = service.resolve_session_id(UUID(account_id), int(campaign_id))
        else:
            return {
                "success": False,
                "error": "Either session_id or account_id with campaign_id is required",
            }
    except ValueError as e:
        return {"success": False, "error": f"Invalid id: {e}"}
    except RotationError as e:
        return {"success": False, "error": str(e)}

    try:
        result = run_async(service.check_session(session_uuid, CheckTrigger.QUEUE))
    except RotationError as e:
        logger.warning(
            "rotate_session_task_failed",
            session_id=str(session_uuid),
            error=str(e),
            error_class=type(e).__name__,
        )
        return {"success": False, "session_id": str(session_uuid), "error": str(e)}

    logger.info("rotate_session_task_completed", **result.to_dict())
    return {"success": result.error is None, **result.to_dict()}


def enqueue_rotation(
    session_id: UUID | str | None = None,
    account_id: UUID | str | None = None,
    campaign_id: int | None = None,
    countdown: float | None = None,
) -> AsyncResult:
    """Queue a rotation check; the worker runs the same check as the scheduler."""
    return rotate_session_task.apply_async(
        kwargs={
            "session_id": str(session_id) if session_id is not None else None,
            "account_id": str(account_id) if account_id is not None else None,
            "campaign_id": campaign_id,
        },
        countdown=countdown,
    )


@celery_app.task(bind=True, name="rotation.sweep")
def rotation_sweep_task(self: Any, limit: int | None = None) -> dict[str, Any]:
    """Check every running session that is due."""
    logger.info("rotation_sweep_task_started", task_id=self.request.id)
    result = run_async(RotationScheduler().run_rotation_sweep(limit=limit))
    return {"success": True, **result.to_dict()}


@celery_app.task(bind=True, name="stats.collect_sweep")
def stats_sweep_task(self: Any) -> dict[str, Any]:
    """Collect yesterday's and today's stats for all campaigns under test."""
    logger.info("stats_sweep_task_started", task_id=self.request.id)
    result = run_async(RotationScheduler().run_stats_sweep())
    return {"success": True, **result}


@celery_app.task(
    bind=True,
    name="stats.collect_campaign",
    max_retries=3,
    default_retry_delay=60,
)
def collect_campaign_stats_task(
    self: Any,
    account_id: str,
    campaign_id: int,
    date_from: str,
    date_to: str,
) -> dict[str, Any]:
    """Fetch and store daily stats of one campaign.

    Args:
        account_id: Account UUID string
        campaign_id: Marketplace campaign id
        date_from: First day, ISO format
        date_to: Last day, ISO format

    Returns:
        Dict with the number of stored rows
    """
    task_id = self.request.id
    try:
        account_uuid = UUID(account_id)
        start = date.fromisoformat(date_from)
        end = date.fromisoformat(date_to)
    except ValueError as e:
        return {"success": False, "error": f"Invalid argument: {e}"}

    logger.info(
        "collect_campaign_stats_task_started",
        task_id=task_id,
        account_id=account_id,
        campaign_id=campaign_id,
        date_from=date_from,
        date_to=date_to,
    )

    try:
        with get_session_context() as session:
            adapter = build_marketplace_adapter(session, account_uuid)
    except RotationError as e:
        return {"success": False, "error": str(e)}

    try:
        rows = run_async(collect_campaign_stats(adapter, account_uuid, campaign_id, start, end))
    except RotationError as e:
        logger.warning(
            "collect_campaign_stats_task_failed",
            task_id=task_id,
            campaign_id=campaign_id,
            error=str(e),
            error_class=type(e).__name__,
        )
        raise self.retry(exc=e) from e
    finally:
        run_async(adapter.close())

    return {"success": True, "campaign_id": campaign_id, "rows": rows}


@celery_app.task(bind=True, name="budget.sweep")
def budget_sweep_task(self: Any) -> dict[str, Any]:
    """Top up low budgets of running sessions."""
    logger.info("budget_sweep_task_started", task_id=self.request.id)
    result = run_async(RotationScheduler().run_budget_sweep())
    return {"success": True, **result}


@celery_app.task(bind=True, name="reports.fetch_analytics_report")
def fetch_analytics_report_task(
    self: Any,
    account_id: str,
    body: dict[str, Any],
) -> dict[str, Any]:
    """Create an analytics report and wait for it.

    The downloaded file is returned base64-encoded under ``content``.
    """
    task_id = self.request.id
    try:
        account_uuid = UUID(account_id)
    except ValueError as e:
        return {"success": False, "error": f"Invalid account ID: {e}"}

    try:
        with get_session_context() as session:
            adapter = build_marketplace_adapter(session, account_uuid)
    except RotationError as e:
        return {"success": False, "error": str(e)}

    try:
        outcome = run_async(ReportService().fetch_report(adapter, body))
    except RotationError as e:
        logger.error(
            "fetch_analytics_report_task_failed",
            task_id=task_id,
            account_id=account_id,
            error=str(e),
            error_class=type(e).__name__,
        )
        return {"success": False, "error": str(e)}
    finally:
        run_async(adapter.close())

    result: dict[str, Any] = {"success": outcome.content is not None, **outcome.to_dict()}
    if outcome.content is not None:
        result["content"] = base64.b64encode(outcome.content).decode("ascii")
    return result
