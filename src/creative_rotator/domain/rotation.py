"""Pure rotation decision logic.

A session shows ``creatives[i]`` while cumulative impressions are in
``[i * views_per_step, (i + 1) * views_per_step)``. Once impressions reach
``len(creatives) * views_per_step`` the last creative has had its share and
the session is completed.

Nothing here touches the database or the network; the rotation service
applies the decision.
"""

from creative_rotator.domain.enums import RotationAction, SessionStatus
from creative_rotator.domain.models import RotationDecision, SessionSnapshot


def required_step(views: int, views_per_step: int, creative_count: int) -> int:
    """Index of the creative that should be live for a view count."""
    if views_per_step <= 0:
        raise ValueError("views_per_step must be positive")
    if creative_count <= 0:
        raise ValueError("creative_count must be positive")
    raw = max(views, 0) // views_per_step
    return min(raw, creative_count - 1)


def is_complete(views: int, views_per_step: int, creative_count: int) -> bool:
    """True once every creative has collected its step's impressions."""
    return max(views, 0) >= views_per_step * creative_count


def decide(session: SessionSnapshot, fresh_views: int) -> RotationDecision:
    """Decide what to do with a session given a fresh cumulative view count.

    A lower fresh value than the stored one (provider lag, a narrower stats
    window) never moves the session backwards: the larger value is used.

    Several thresholds crossed at once produce a single jump to the target
    step; creatives skipped this way were never live and get no step record.
    """
    views = max(fresh_views, session.cumulative_views)
    current = session.current_step

    if session.status != SessionStatus.RUNNING:
        return RotationDecision(RotationAction.NOOP, views, current, current)

    count = len(session.creatives)
    target = required_step(views, session.views_per_step, count)
    completes = is_complete(views, session.views_per_step, count)

    if target > current:
        return RotationDecision(RotationAction.ADVANCE, views, current, target, completes)
    if completes:
        return RotationDecision(RotationAction.COMPLETE, views, current, current, True)
    return RotationDecision(RotationAction.RECORD_VIEWS, views, current, current)
