"""Domain enumerations."""

from enum import StrEnum


class SessionStatus(StrEnum):
    """Lifecycle status of a rotation session."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.STOPPED, SessionStatus.COMPLETED)


# Statuses covered by the one-active-session-per-campaign rule
ACTIVE_STATUSES = (SessionStatus.DRAFT, SessionStatus.RUNNING, SessionStatus.PAUSED)


class RotationAction(StrEnum):
    """What the decision function wants done for a session."""

    NOOP = "noop"
    RECORD_VIEWS = "record_views"
    ADVANCE = "advance"
    COMPLETE = "complete"


class RotationOutcome(StrEnum):
    """Result of one check of a session."""

    SKIPPED = "skipped"  # not running
    UNCHANGED = "unchanged"  # views recorded, same step
    ROTATED = "rotated"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"  # another writer advanced first
    FAILED = "failed"


class CheckTrigger(StrEnum):
    """Where a rotation check originated."""

    SCHEDULER = "scheduler"
    QUEUE = "queue"
    MANUAL = "manual"


class ReportStatus(StrEnum):
    """Terminal status of an analytics report request."""

    READY = "ready"
    FAILED = "failed"
    TIMEOUT = "timeout"
