"""Tests for the pure rotation decision function."""

from dataclasses import replace
from datetime import date
from uuid import uuid4

import pytest

from creative_rotator.domain.enums import RotationAction, SessionStatus
from creative_rotator.domain.models import SessionSnapshot
from creative_rotator.domain.rotation import decide, is_complete, required_step


def make_snapshot(**overrides) -> SessionSnapshot:
    base = SessionSnapshot(
        id=uuid4(),
        account_id=uuid4(),
        campaign_id=101,
        listing_id=555,
        creatives=("https://cdn/a.jpg", "https://cdn/b.jpg", "https://cdn/c.jpg"),
        views_per_step=1000,
        current_step=0,
        views_at_step_start=0,
        cumulative_views=0,
        status=SessionStatus.RUNNING,
        metrics_since=date(2026, 10, 19),
    )
    return replace(base, **overrides)


def apply(snapshot: SessionSnapshot, fresh_views: int) -> SessionSnapshot:
    """Apply a decision the way the rotation service persists it."""
    decision = decide(snapshot, fresh_views)
    updated = replace(snapshot, cumulative_views=decision.views)
    if decision.action == RotationAction.ADVANCE:
        updated = replace(
            updated, current_step=decision.to_step, views_at_step_start=decision.views
        )
    if decision.completes:
        updated = replace(updated, status=SessionStatus.COMPLETED)
    return updated


class TestRequiredStep:
    @pytest.mark.parametrize(
        ("views", "expected"),
        [
            (0, 0),
            (999, 0),
            (1000, 1),
            (2999, 2),
            (3000, 2),
            (10_000, 2),
            (-5, 0),
        ],
    )
    def test_required_step(self, views: int, expected: int) -> None:
        assert required_step(views, 1000, 3) == expected

    def test_rejects_non_positive_step_size(self) -> None:
        with pytest.raises(ValueError):
            required_step(100, 0, 3)

    def test_is_complete_at_exact_total(self) -> None:
        assert is_complete(2999, 1000, 3) is False
        assert is_complete(3000, 1000, 3) is True


class TestDecide:
    def test_below_threshold_records_views(self) -> None:
        decision = decide(make_snapshot(), 999)

        assert decision.action == RotationAction.RECORD_VIEWS
        assert decision.views == 999
        assert decision.from_step == decision.to_step == 0
        assert decision.completes is False

    def test_three_creative_walkthrough(self) -> None:
        """Thresholds at 1000 and 2000 move the step; 3000 completes the session."""
        snapshot = make_snapshot()

        first = decide(snapshot, 1000)
        assert first.action == RotationAction.ADVANCE
        assert (first.from_step, first.to_step) == (0, 1)
        snapshot = apply(snapshot, 1000)

        second = decide(snapshot, 2999)
        assert second.action == RotationAction.ADVANCE
        assert (second.from_step, second.to_step) == (1, 2)
        assert second.completes is False
        snapshot = apply(snapshot, 2999)
        assert snapshot.views_at_step_start == 2999

        third = decide(snapshot, 3000)
        assert third.action == RotationAction.COMPLETE
        assert third.completes is True
        assert third.to_step == 2
        snapshot = apply(snapshot, 3000)
        assert snapshot.status == SessionStatus.COMPLETED

        assert decide(snapshot, 5000).action == RotationAction.NOOP

    def test_multiple_thresholds_jump_once(self) -> None:
        decision = decide(make_snapshot(), 2500)

        assert decision.action == RotationAction.ADVANCE
        assert (decision.from_step, decision.to_step) == (0, 2)
        assert decision.completes is False

    def test_jump_past_the_end_advances_and_completes(self) -> None:
        decision = decide(make_snapshot(), 5000)

        assert decision.action == RotationAction.ADVANCE
        assert decision.to_step == 2
        assert decision.completes is True

    def test_lower_fresh_count_never_regresses(self) -> None:
        snapshot = make_snapshot(current_step=1, cumulative_views=1500, views_at_step_start=1000)

        decision = decide(snapshot, 100)

        assert decision.action == RotationAction.RECORD_VIEWS
        assert decision.views == 1500
        assert decision.to_step == 1

    @pytest.mark.parametrize(
        "status",
        [
            SessionStatus.DRAFT,
            SessionStatus.PAUSED,
            SessionStatus.STOPPED,
            SessionStatus.COMPLETED,
        ],
    )
    def test_non_running_session_is_left_alone(self, status: SessionStatus) -> None:
        decision = decide(make_snapshot(status=status), 10_000)

        assert decision.action == RotationAction.NOOP
        assert decision.from_step == decision.to_step == 0

    def test_same_input_same_decision(self) -> None:
        snapshot = make_snapshot(current_step=1, cumulative_views=1200)

        assert decide(snapshot, 1800) == decide(snapshot, 1800)

    def test_applying_twice_changes_nothing_more(self) -> None:
        once = apply(make_snapshot(), 1400)
        twice = apply(once, 1400)

        assert once == twice
        assert decide(twice, 1400).action == RotationAction.RECORD_VIEWS

    @pytest.mark.parametrize("views", [0, 1, 999, 1000, 1999, 2000, 2999, 3000, 9999])
    def test_step_stays_in_range_and_never_moves_back(self, views: int) -> None:
        snapshot = make_snapshot(current_step=1, cumulative_views=1000, views_at_step_start=1000)

        decision = decide(snapshot, views)

        assert 0 <= decision.to_step <= len(snapshot.creatives) - 1
        assert decision.to_step >= snapshot.current_step
        assert decision.views >= snapshot.cumulative_views
