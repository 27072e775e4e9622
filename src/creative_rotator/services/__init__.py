"""Application services."""

from creative_rotator.services.alerting import Alert, AlertingService, AlertSeverity
from creative_rotator.services.budget import BudgetGuard, TopUpResult
from creative_rotator.services.campaign_stats import MetricsAggregator, normalize_daily_stats
from creative_rotator.services.reports import ReportOutcome, ReportService
from creative_rotator.services.resilience import ResilientCaller
from creative_rotator.services.rotation import RotationService
from creative_rotator.services.scheduler import RotationScheduler, SweepResult

__all__ = [
    "Alert",
    "AlertingService",
    "AlertSeverity",
    "BudgetGuard",
    "MetricsAggregator",
    "ReportOutcome",
    "ReportService",
    "ResilientCaller",
    "RotationScheduler",
    "RotationService",
    "SweepResult",
    "TopUpResult",
    "normalize_daily_stats",
]
