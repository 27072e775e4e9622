"""Domain models - pure Python classes independent of database."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from creative_rotator.domain.enums import RotationAction, RotationOutcome, SessionStatus


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of a rotation session taken inside a short transaction.

    Services pass snapshots around instead of ORM rows so no database
    session has to stay open across network calls.
    """

    id: UUID
    account_id: UUID
    campaign_id: int
    listing_id: int
    creatives: tuple[str, ...]
    views_per_step: int
    current_step: int
    views_at_step_start: int
    cumulative_views: int
    status: SessionStatus
    metrics_since: date
    auto_top_up: bool = False
    top_up_threshold: int = 0
    top_up_amount: int = 0
    next_check_at: datetime | None = None
    last_check_at: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def current_creative(self) -> str:
        return self.creatives[self.current_step]

    @property
    def is_last_step(self) -> bool:
        return self.current_step == len(self.creatives) - 1


@dataclass(frozen=True)
class RotationDecision:
    """Output of the pure decision function."""

    action: RotationAction
    views: int
    from_step: int
    to_step: int
    completes: bool = False

    @property
    def is_transition(self) -> bool:
        return self.action in (RotationAction.ADVANCE, RotationAction.COMPLETE)


@dataclass
class RotationResult:
    """What a single check of a session did."""

    session_id: UUID
    outcome: RotationOutcome
    views: int | None = None
    from_step: int | None = None
    to_step: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": str(self.session_id),
            "outcome": self.outcome.value,
            "views": self.views,
            "from_step": self.from_step,
            "to_step": self.to_step,
            "error": self.error,
        }


@dataclass
class DailyStats:
    """One normalized day of campaign statistics from the provider."""

    day: date | None
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0

    @property
    def ctr(self) -> float:
        """Click-through rate in percent."""
        if self.impressions <= 0:
            return 0.0
        return round(self.clicks / self.impressions * 100, 4)


@dataclass
class StepResult:
    """Performance of one creative within a finished or running session."""

    step_index: int
    creative_ref: str
    views_at_start: int
    views_at_end: int | None
    views_collected: int
    started_at: datetime
    completed_at: datetime | None
    duration_hours: float
    views_per_hour: float


@dataclass
class SessionResults:
    """Per-step breakdown and winner of a rotation session."""

    session_id: UUID
    status: SessionStatus
    views_per_step: int
    steps: list[StepResult] = field(default_factory=list)
    winner: StepResult | None = None
