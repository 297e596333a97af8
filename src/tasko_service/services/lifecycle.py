"""
Task lifecycle rules.

Pure Python with no FastAPI or storage imports. TaskManager applies these rules
against the store.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

STATUS_OPEN = "open"
STATUS_ASSIGNED = "assigned"
STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

# Forward order of the happy path; cancelled sits outside it
STATUS_ORDER: tuple[str, ...] = (
    STATUS_OPEN,
    STATUS_ASSIGNED,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
)
TASK_STATUSES: tuple[str, ...] = (*STATUS_ORDER, STATUS_CANCELLED)

TASK_CATEGORIES: frozenset[str] = frozenset(
    {"delivery", "pickup", "data-entry", "laundry", "tutoring", "babysitting", "other"}
)

ROLE_CLIENT = "client"
ROLE_WORKER = "worker"
USER_ROLES: frozenset[str] = frozenset({ROLE_CLIENT, ROLE_WORKER})

VERIFIED_BADGE = "verified"
FIFTY_TASKS_BADGE = "50-tasks"
FIFTY_TASKS_THRESHOLD = 50

MIN_RATING = 1
MAX_RATING = 5


def can_transition(current: str, target: str) -> bool:
    """
    Check whether a task may move from ``current`` to ``target``.

    The happy path only ever advances by one step. Cancellation is terminal
    and reachable from every status except completed and cancelled.
    """
    if target == STATUS_CANCELLED:
        return current in STATUS_ORDER and current != STATUS_COMPLETED
    if current not in STATUS_ORDER or target not in STATUS_ORDER:
        return False
    return STATUS_ORDER.index(target) == STATUS_ORDER.index(current) + 1


def compute_reliability_score(ratings: Iterable[int]) -> float:
    """
    Mean of every rating a worker has received, or 0.0 with no reviews.

    Always a full recompute over the complete history.
    """
    values = list(ratings)
    if not values:
        return 0.0
    return sum(values) / len(values)


def award_milestone_badges(badges: Sequence[str], completed_tasks: int) -> list[str]:
    """Return the badge list with any newly reached task-count milestones added."""
    awarded = list(badges)
    if completed_tasks >= FIFTY_TASKS_THRESHOLD and FIFTY_TASKS_BADGE not in awarded:
        awarded.append(FIFTY_TASKS_BADGE)
    return awarded


def grant_badge(badges: Sequence[str], badge: str) -> list[str]:
    """Add a badge once."""
    granted = list(badges)
    if badge not in granted:
        granted.append(badge)
    return granted


def compute_settlement(price: float, commission_rate: float) -> tuple[float, float]:
    """Split a task price into (commission, payout)."""
    commission = price * commission_rate
    return commission, price - commission


def parse_rating(value: object) -> int | None:
    """
    Coerce a submitted rating to an int in 1..5.

    Integers and integer strings are accepted; booleans, floats and anything
    out of range return None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        rating = value
    elif isinstance(value, str) and value.strip().isdecimal():
        rating = int(value.strip())
    else:
        return None
    if MIN_RATING <= rating <= MAX_RATING:
        return rating
    return None
