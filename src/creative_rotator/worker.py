"""Celery worker configuration."""

from celery import Celery

from creative_rotator.config import settings
from creative_rotator.logging import setup_logging

# Setup logging before anything else
setup_logging()

# Create Celery app
celery_app = Celery(
    "creative_rotator",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # At-least-once delivery: a task is acknowledged only after it finished
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=900,  # 15 minutes max
    task_soft_time_limit=840,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
    # Result backend
    result_expires=86400,  # 24 hours
    # Task routing
    task_routes={
        "rotation.rotate_session": {"queue": "rotation"},
        "rotation.sweep": {"queue": "rotation"},
        "budget.sweep": {"queue": "rotation"},
        "stats.collect_sweep": {"queue": "stats"},
        "stats.collect_campaign": {"queue": "stats"},
        "reports.fetch_analytics_report": {"queue": "stats"},
    },
    # Beat scheduler (for periodic tasks)
    beat_schedule={
        "rotation-sweep": {
            "task": "rotation.sweep",
            "schedule": settings.rotation_check_interval_minutes * 60.0,
            "options": {"queue": "rotation"},
        },
        "stats-collect-sweep": {
            "task": "stats.collect_sweep",
            "schedule": settings.stats_collection_interval_minutes * 60.0,
            "options": {"queue": "stats"},
        },
        "budget-sweep": {
            "task": "budget.sweep",
            "schedule": settings.budget_check_interval_minutes * 60.0,
            "options": {"queue": "rotation"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["creative_rotator.jobs"], related_name="rotation_tasks")
