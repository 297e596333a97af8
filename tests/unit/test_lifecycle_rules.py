"""Unit tests for the pure task lifecycle rules."""

from __future__ import annotations

import pytest

from tasko_service.services.lifecycle import (
    FIFTY_TASKS_BADGE,
    STATUS_ASSIGNED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    VERIFIED_BADGE,
    award_milestone_badges,
    can_transition,
    compute_reliability_score,
    compute_settlement,
    grant_badge,
    parse_rating,
)


class TestTransitions:
    """State machine: open -> assigned -> in-progress -> completed."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (STATUS_OPEN, STATUS_ASSIGNED),
            (STATUS_ASSIGNED, STATUS_IN_PROGRESS),
            (STATUS_IN_PROGRESS, STATUS_COMPLETED),
        ],
    )
    def test_forward_steps_allowed(self, current: str, target: str) -> None:
        assert can_transition(current, target) is True

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (STATUS_ASSIGNED, STATUS_OPEN),
            (STATUS_COMPLETED, STATUS_IN_PROGRESS),
            (STATUS_OPEN, STATUS_IN_PROGRESS),
            (STATUS_OPEN, STATUS_COMPLETED),
            (STATUS_CANCELLED, STATUS_OPEN),
        ],
    )
    def test_backward_and_skipping_rejected(self, current: str, target: str) -> None:
        assert can_transition(current, target) is False

    @pytest.mark.unit
    def test_cancel_is_terminal_and_not_from_completed(self) -> None:
        assert can_transition(STATUS_OPEN, STATUS_CANCELLED) is True
        assert can_transition(STATUS_IN_PROGRESS, STATUS_CANCELLED) is True
        assert can_transition(STATUS_COMPLETED, STATUS_CANCELLED) is False
        assert can_transition(STATUS_CANCELLED, STATUS_CANCELLED) is False


@pytest.mark.unit
def test_reliability_score_is_mean_of_ratings() -> None:
    """Ratings 5, 3, 4 give a score of 4.0."""
    assert compute_reliability_score([5, 3, 4]) == 4.0


@pytest.mark.unit
def test_reliability_score_without_ratings_is_zero() -> None:
    assert compute_reliability_score([]) == 0.0


@pytest.mark.unit
def test_settlement_splits_commission_and_payout() -> None:
    """A price of 1000 yields commission 100 and payout 900."""
    commission, payout = compute_settlement(1000, 0.1)
    assert commission == pytest.approx(100)
    assert payout == pytest.approx(900)


@pytest.mark.unit
def test_fifty_tasks_badge_awarded_at_threshold() -> None:
    assert FIFTY_TASKS_BADGE not in award_milestone_badges([], 49)
    assert award_milestone_badges([VERIFIED_BADGE], 50) == [VERIFIED_BADGE, FIFTY_TASKS_BADGE]


@pytest.mark.unit
def test_fifty_tasks_badge_not_duplicated() -> None:
    assert award_milestone_badges([FIFTY_TASKS_BADGE], 51) == [FIFTY_TASKS_BADGE]


@pytest.mark.unit
def test_grant_badge_adds_once() -> None:
    badges = grant_badge([], VERIFIED_BADGE)
    assert badges == [VERIFIED_BADGE]
    assert grant_badge(badges, VERIFIED_BADGE) == [VERIFIED_BADGE]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (1, 1),
        (5, 5),
        ("4", 4),
        (0, None),
        (6, None),
        (4.5, None),
        (True, None),
        ("five", None),
        ("\u00b2", None),
        (None, None),
    ],
)
def test_parse_rating(value: object, expected: int | None) -> None:
    assert parse_rating(value) == expected
