"""Celery job definitions."""

from creative_rotator.jobs.rotation_tasks import (
    budget_sweep_task,
    collect_campaign_stats_task,
    enqueue_rotation,
    fetch_analytics_report_task,
    rotate_session_task,
    rotation_sweep_task,
    stats_sweep_task,
)

__all__ = [
    # Rotation
    "rotate_session_task",
    "rotation_sweep_task",
    "enqueue_rotation",
    # Stats and budget
    "stats_sweep_task",
    "collect_campaign_stats_task",
    "budget_sweep_task",
    # Reports
    "fetch_analytics_report_task",
]
