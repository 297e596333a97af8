"""Unit tests for TaskStore."""

from datetime import UTC, datetime

import pytest

from tasko_service.services.task_store import (
    DuplicateReviewError,
    DuplicateUserError,
    TaskStore,
)


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _user_data(user_id: str, role: str = "worker", email: str | None = None) -> dict[str, object]:
    timestamp = _now()
    return {
        "user_id": user_id,
        "name": f"User {user_id}",
        "email": email or f"{user_id}@example.com",
        "password_hash": "scrypt$16384$8$1$salt$key",
        "phone": "+254700000000",
        "role": role,
        "skills": [],
        "availability": "anytime",
        "bio": None,
        "is_verified": False,
        "badges": [],
        "reliability_score": 0.0,
        "completed_tasks": 0,
        "longitude": None,
        "latitude": None,
        "address": None,
        "created_at": timestamp,
        "updated_at": timestamp,
    }


def _task_data(
    task_id: str,
    status: str = "open",
    worker_id: str | None = None,
) -> dict[str, object]:
    timestamp = _now()
    return {
        "task_id": task_id,
        "client_id": "u-client",
        "worker_id": worker_id,
        "title": f"Task {task_id}",
        "description": "Description",
        "category": "delivery",
        "price": 1000.0,
        "deadline": "2030-01-01T00:00:00Z",
        "is_remote": 0,
        "longitude": 36.8172,
        "latitude": -1.2864,
        "address": "Nairobi",
        "status": status,
        "escrow_deposited": 0,
        "escrow_amount": 0.0,
        "escrow_transaction_ref": None,
        "completed_at": None,
        "created_at": timestamp,
        "updated_at": timestamp,
    }


def _review_data(review_id: str, task_id: str, rating: int) -> dict[str, object]:
    return {
        "review_id": review_id,
        "task_id": task_id,
        "reviewer_id": "u-client",
        "rating": rating,
        "comment": None,
        "created_at": _now(),
    }


@pytest.fixture
def store(tmp_path):
    task_store = TaskStore(db_path=str(tmp_path / "tasko.db"))
    task_store.insert_user(_user_data("u-client", role="client"))
    task_store.insert_user(_user_data("u-worker"))
    task_store.insert_user(_user_data("u-other"))
    yield task_store
    task_store.close()


@pytest.mark.unit
def test_user_crud(store) -> None:
    """Users persist with decoded JSON columns and update in place."""
    user = store.get_user("u-worker")
    assert user is not None
    assert user["skills"] == []
    assert user["is_verified"] is False

    changed = store.update_user("u-worker", {"badges": ["verified"], "is_verified": True})
    assert changed == 1

    user = store.get_user_by_email("u-worker@example.com")
    assert user is not None
    assert user["badges"] == ["verified"]
    assert user["is_verified"] is True

    assert store.update_user("u-missing", {"name": "Ghost"}) == 0
    assert store.count_users() == 3
    assert set(store.get_users(["u-client", "u-worker", "u-missing"])) == {"u-client", "u-worker"}


@pytest.mark.unit
def test_duplicate_email_raises(store) -> None:
    with pytest.raises(DuplicateUserError):
        store.insert_user(_user_data("u-dupe", email="u-worker@example.com"))


@pytest.mark.unit
def test_update_user_rejects_unknown_column(store) -> None:
    with pytest.raises(ValueError):
        store.update_user("u-worker", {"is_admin": True})


@pytest.mark.unit
def test_task_crud_and_counts(store) -> None:
    """Task operations persist, update, list, and count correctly."""
    store.insert_task(_task_data("t-1"))
    store.insert_task(_task_data("t-2", status="assigned", worker_id="u-worker"))

    task = store.get_task("t-1")
    assert task is not None
    assert task["status"] == "open"
    assert task["is_remote"] is False
    assert task["escrow_deposited"] is False
    assert task["reviews"] == []

    assert len(store.list_tasks()) == 2
    assert [t["task_id"] for t in store.list_tasks(status="assigned")] == ["t-2"]
    assert [t["task_id"] for t in store.list_tasks(worker_id="u-worker")] == ["t-2"]
    assert store.count_tasks() == 2
    assert store.count_tasks_by_status() == {"open": 1, "assigned": 1}


@pytest.mark.unit
def test_conditional_update_only_applies_when_status_matches(store) -> None:
    """A compare-and-swap on status applies once; the second writer sees zero rows."""
    store.insert_task(_task_data("t-1"))

    first = store.update_task(
        "t-1", {"status": "assigned", "worker_id": "u-worker"}, expected_status="open"
    )
    second = store.update_task(
        "t-1", {"status": "assigned", "worker_id": "u-other"}, expected_status="open"
    )

    assert first == 1
    assert second == 0
    task = store.get_task("t-1")
    assert task is not None
    assert task["worker_id"] == "u-worker"


@pytest.mark.unit
def test_conditional_update_on_escrow_flag(store) -> None:
    store.insert_task(_task_data("t-1", status="assigned", worker_id="u-worker"))

    assert (
        store.update_task(
            "t-1",
            {"escrow_deposited": 1},
            expected_status="assigned",
            expected_escrow_deposited=False,
        )
        == 1
    )
    assert (
        store.update_task(
            "t-1",
            {"escrow_deposited": 1},
            expected_status="assigned",
            expected_escrow_deposited=False,
        )
        == 0
    )


@pytest.mark.unit
def test_update_task_rejects_unknown_column(store) -> None:
    store.insert_task(_task_data("t-1"))
    with pytest.raises(ValueError):
        store.update_task("t-1", {"owner": "u-x"}, expected_status=None)


@pytest.mark.unit
def test_transaction_rolls_back_task_and_user_together(store) -> None:
    """A failure inside transaction() leaves neither row changed."""
    store.insert_task(_task_data("t-1", status="in-progress", worker_id="u-worker"))

    with pytest.raises(RuntimeError), store.transaction():
        store.update_task("t-1", {"status": "completed"}, expected_status="in-progress")
        store.update_user("u-worker", {"completed_tasks": 1})
        raise RuntimeError("boom")

    task = store.get_task("t-1")
    worker = store.get_user("u-worker")
    assert task is not None
    assert worker is not None
    assert task["status"] == "in-progress"
    assert worker["completed_tasks"] == 0


@pytest.mark.unit
def test_transaction_commits_on_success(store) -> None:
    store.insert_task(_task_data("t-1", status="in-progress", worker_id="u-worker"))

    with store.transaction():
        store.update_task("t-1", {"status": "completed"}, expected_status="in-progress")
        with store.transaction():
            store.update_user("u-worker", {"completed_tasks": 1})

    task = store.get_task("t-1")
    worker = store.get_user("u-worker")
    assert task is not None
    assert worker is not None
    assert task["status"] == "completed"
    assert worker["completed_tasks"] == 1


@pytest.mark.unit
def test_duplicate_review_raises(store) -> None:
    store.insert_task(_task_data("t-1", status="completed", worker_id="u-worker"))
    store.insert_review(_review_data("r-1", "t-1", 5))

    with pytest.raises(DuplicateReviewError):
        store.insert_review(_review_data("r-2", "t-1", 3))

    task = store.get_task("t-1")
    assert task is not None
    assert [review["rating"] for review in task["reviews"]] == [5]


@pytest.mark.unit
def test_worker_ratings_span_completed_tasks(store) -> None:
    """Ratings are gathered across every completed task of the worker."""
    for task_id, rating in (("t-1", 5), ("t-2", 3), ("t-3", 4)):
        store.insert_task(_task_data(task_id, status="completed", worker_id="u-worker"))
        store.insert_review(_review_data(f"r-{task_id}", task_id, rating))
    store.insert_task(_task_data("t-4", status="in-progress", worker_id="u-worker"))

    assert sorted(store.list_worker_ratings("u-worker")) == [3, 4, 5]
    assert store.list_worker_ratings("u-client") == []


@pytest.mark.unit
def test_worker_board_includes_own_and_open_tasks(store) -> None:
    store.insert_task(_task_data("t-open"))
    store.insert_task(_task_data("t-mine", status="assigned", worker_id="u-worker"))
    store.insert_task(_task_data("t-other", status="assigned", worker_id="u-other"))

    board = {task["task_id"] for task in store.list_worker_board("u-worker")}
    assert board == {"t-open", "t-mine"}
