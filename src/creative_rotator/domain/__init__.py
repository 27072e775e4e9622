"""Domain models and business logic."""

from creative_rotator.domain.enums import (
    ACTIVE_STATUSES,
    CheckTrigger,
    ReportStatus,
    RotationAction,
    RotationOutcome,
    SessionStatus,
)
from creative_rotator.domain.errors import (
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    RateLimitedError,
    RotationError,
    ValidationError,
)
from creative_rotator.domain.models import (
    DailyStats,
    RotationDecision,
    RotationResult,
    SessionResults,
    SessionSnapshot,
    StepResult,
)
from creative_rotator.domain.rotation import decide, is_complete, required_step

__all__ = [
    "ACTIVE_STATUSES",
    "CheckTrigger",
    "DailyStats",
    "ExternalServiceError",
    "InvalidTransitionError",
    "NotFoundError",
    "PersistenceError",
    "ProviderError",
    "RateLimitedError",
    "ReportStatus",
    "RotationAction",
    "RotationDecision",
    "RotationError",
    "RotationOutcome",
    "RotationResult",
    "SessionResults",
    "SessionSnapshot",
    "SessionStatus",
    "StepResult",
    "ValidationError",
    "decide",
    "is_complete",
    "required_step",
]
