"""Task lifecycle management: the marketplace business logic."""

from __future__ import annotations

import math
import sqlite3
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from tasko_service.core.exceptions import ServiceError
from tasko_service.logging import get_logger
from tasko_service.services.geo import haversine_km, parse_latitude, parse_longitude
from tasko_service.services.lifecycle import (
    ROLE_CLIENT,
    ROLE_WORKER,
    STATUS_ASSIGNED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    TASK_CATEGORIES,
    TASK_STATUSES,
    award_milestone_badges,
    can_transition,
    compute_reliability_score,
    compute_settlement,
    parse_rating,
)
from tasko_service.services.task_store import DuplicateReviewError

if TYPE_CHECKING:
    from tasko_service.clients.payment_gateway import PaymentGateway
    from tasko_service.services.task_store import TaskStore
    from tasko_service.services.token_service import Identity

REMOTE_ADDRESS = "Remote"


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_non_negative_number(value: object) -> bool:
    """Check if value is a finite number >= 0 (not bool)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value) and value >= 0
    except OverflowError:
        return False


def _parse_deadline(value: object) -> str | None:
    """Parse an ISO 8601 deadline and normalise it to UTC with a Z suffix."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _require_role(identity: Identity, role: str) -> None:
    if identity.role != role:
        raise ServiceError(
            "FORBIDDEN",
            f"Only users with role '{role}' can perform this action",
            403,
            {"required_role": role},
        )


class TaskManager:
    """
    Manages the task lifecycle: creation, acceptance, escrow deposit,
    start, completion, and review.

    Transition rules come from ``lifecycle``; persistence, conditional
    writes and transactions from TaskStore; escrow transaction references
    from PaymentGateway.
    """

    def __init__(
        self,
        store: TaskStore,
        payment_gateway: PaymentGateway,
        commission_rate: float,
        available_radius_km: float,
        max_available_results: int,
        max_comment_length: int,
    ) -> None:
        self._store = store
        self._payment_gateway = payment_gateway
        self._commission_rate = commission_rate
        self._available_radius_km = available_radius_km
        self._max_available_results = max_available_results
        self._max_comment_length = max_comment_length
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _party_summary(self, user: dict[str, Any] | None) -> dict[str, Any] | None:
        if user is None:
            return None
        return {
            "user_id": user["user_id"],
            "name": user["name"],
            "email": user["email"],
            "phone": user["phone"],
        }

    def _task_to_response(
        self,
        row: dict[str, Any],
        users: dict[str, dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Convert a task row to its response dict with party contact details."""
        if users is None:
            ids = [row["client_id"]] + ([row["worker_id"]] if row["worker_id"] else [])
            users = self._store.get_users(ids)

        if row["is_remote"]:
            location: dict[str, Any] = {
                "is_remote": True,
                "coordinates": None,
                "address": row["address"],
            }
        else:
            location = {
                "is_remote": False,
                "coordinates": [row["longitude"], row["latitude"]],
                "address": row["address"],
            }

        return {
            "task_id": row["task_id"],
            "client_id": row["client_id"],
            "worker_id": row["worker_id"],
            "client": self._party_summary(users.get(row["client_id"])),
            "worker": self._party_summary(users.get(row["worker_id"]))
            if row["worker_id"]
            else None,
            "title": row["title"],
            "description": row["description"],
            "category": row["category"],
            "price": row["price"],
            "deadline": row["deadline"],
            "location": location,
            "status": row["status"],
            "escrow": {
                "deposited": row["escrow_deposited"],
                "amount": row["escrow_amount"],
                "transaction_ref": row["escrow_transaction_ref"],
            },
            "completed_at": row["completed_at"],
            "reviews": [
                {
                    "review_id": review["review_id"],
                    "reviewer_id": review["reviewer_id"],
                    "rating": review["rating"],
                    "comment": review["comment"],
                    "created_at": review["created_at"],
                }
                for review in row.get("reviews", [])
            ],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def _tasks_to_response(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        ids: list[str] = []
        for row in rows:
            ids.append(row["client_id"])
            if row["worker_id"]:
                ids.append(row["worker_id"])
        users = self._store.get_users(ids)
        return [self._task_to_response(row, users) for row in rows]

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task

    def _credit_worker(self, worker_id: str) -> dict[str, Any]:
        """
        Count one more completed task for the worker and award milestones.

        Must run inside the completion transaction.
        """
        try:
            worker = self._store.get_user(worker_id)
            if worker is None:
                raise ServiceError(
                    "WORKER_UPDATE_FAILED",
                    "Assigned worker could not be updated",
                    500,
                    {},
                )
            completed_tasks = int(worker["completed_tasks"]) + 1
            badges = award_milestone_badges(worker["badges"], completed_tasks)
            self._store.update_user(
                worker_id,
                {
                    "completed_tasks": completed_tasks,
                    "badges": badges,
                    "updated_at": _now_iso(),
                },
            )
        except sqlite3.Error as exc:
            raise ServiceError(
                "WORKER_UPDATE_FAILED",
                "Assigned worker could not be updated",
                500,
                {},
            ) from exc
        return {"completed_tasks": completed_tasks, "badges": badges}

    def _rescore_worker(self, worker_id: str) -> float:
        """
        Recompute the worker's reliability score from every rating.

        Must run inside the review transaction.
        """
        try:
            score = compute_reliability_score(self._store.list_worker_ratings(worker_id))
            changed = self._store.update_user(
                worker_id,
                {"reliability_score": score, "updated_at": _now_iso()},
            )
        except sqlite3.Error as exc:
            raise ServiceError(
                "WORKER_UPDATE_FAILED",
                "Worker reliability score could not be updated",
                500,
                {},
            ) from exc
        if changed == 0:
            raise ServiceError(
                "WORKER_UPDATE_FAILED",
                "Worker reliability score could not be updated",
                500,
                {},
            )
        return score

    # ------------------------------------------------------------------
    # Public methods (called by routers)
    # ------------------------------------------------------------------

    def create_task(self, identity: Identity, body: dict[str, Any]) -> dict[str, Any]:
        """
        Post a new task as a client.

        Error precedence:
        1. FORBIDDEN: caller is not a client
        2. VALIDATION_ERROR: title, description, category, price, deadline, location
        """
        _require_role(identity, ROLE_CLIENT)

        title = body.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ServiceError(
                "VALIDATION_ERROR", "Title must be a non-empty string", 400, {"field": "title"}
            )

        description = body.get("description")
        if not isinstance(description, str) or not description.strip():
            raise ServiceError(
                "VALIDATION_ERROR",
                "Description must be a non-empty string",
                400,
                {"field": "description"},
            )

        category = body.get("category")
        if category not in TASK_CATEGORIES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Category must be one of: {', '.join(sorted(TASK_CATEGORIES))}",
                400,
                {"field": "category", "valid_categories": sorted(TASK_CATEGORIES)},
            )

        price = body.get("price")
        if not _is_non_negative_number(price):
            raise ServiceError(
                "VALIDATION_ERROR",
                "Price must be a non-negative number",
                400,
                {"field": "price"},
            )

        deadline = _parse_deadline(body.get("deadline"))
        if deadline is None:
            raise ServiceError(
                "VALIDATION_ERROR",
                "Deadline must be an ISO 8601 timestamp",
                400,
                {"field": "deadline"},
            )

        location = body.get("location")
        if not isinstance(location, dict):
            raise ServiceError(
                "VALIDATION_ERROR", "Location is required", 400, {"field": "location"}
            )

        longitude: float | None = None
        latitude: float | None = None
        if location.get("is_remote") is True:
            is_remote = True
            address = REMOTE_ADDRESS
        else:
            is_remote = False
            latitude = parse_latitude(location.get("lat"))
            longitude = parse_longitude(location.get("lng"))
            if latitude is None or longitude is None:
                raise ServiceError(
                    "VALIDATION_ERROR",
                    "Location requires numeric lat and lng unless the task is remote",
                    400,
                    {"field": "location"},
                )
            raw_address = location.get("address")
            if not isinstance(raw_address, str) or not raw_address.strip():
                raise ServiceError(
                    "VALIDATION_ERROR",
                    "Location requires an address unless the task is remote",
                    400,
                    {"field": "location.address"},
                )
            address = raw_address.strip()

        task_id = f"t-{uuid.uuid4()}"
        now = _now_iso()
        self._store.insert_task(
            {
                "task_id": task_id,
                "client_id": identity.user_id,
                "worker_id": None,
                "title": title.strip(),
                "description": description.strip(),
                "category": category,
                "price": float(price),  # type: ignore[arg-type]
                "deadline": deadline,
                "is_remote": int(is_remote),
                "longitude": longitude,
                "latitude": latitude,
                "address": address,
                "status": STATUS_OPEN,
                "escrow_deposited": 0,
                "escrow_amount": 0.0,
                "escrow_transaction_ref": None,
                "completed_at": None,
                "created_at": now,
                "updated_at": now,
            }
        )

        self._logger.info(
            "Task created",
            extra={"task_id": task_id, "client_id": identity.user_id, "category": category},
        )
        return self._task_to_response(self._load_task(task_id))

    def list_client_tasks(self, identity: Identity) -> list[dict[str, Any]]:
        """Tasks posted by the calling client, newest first."""
        _require_role(identity, ROLE_CLIENT)
        return self._tasks_to_response(self._store.list_tasks(client_id=identity.user_id))

    def list_worker_tasks(self, identity: Identity) -> list[dict[str, Any]]:
        """The calling worker's tasks plus every open task, newest first."""
        _require_role(identity, ROLE_WORKER)
        return self._tasks_to_response(self._store.list_worker_board(identity.user_id))

    def list_available_tasks(
        self,
        identity: Identity,
        lat: str | None,
        lng: str | None,
        radius_km: str | None,
    ) -> list[dict[str, Any]]:
        """
        Open tasks near the worker, plus remote tasks.

        Nearby tasks come first ordered by distance, then remote tasks
        newest first; the list is capped at max_available_results.
        """
        _require_role(identity, ROLE_WORKER)

        if lat is None or lng is None or lat == "" or lng == "":
            raise ServiceError("VALIDATION_ERROR", "Location required", 400, {})

        latitude = parse_latitude(lat)
        longitude = parse_longitude(lng)
        if latitude is None or longitude is None:
            raise ServiceError(
                "VALIDATION_ERROR", "lat and lng must be valid coordinates", 400, {}
            )

        radius = self._available_radius_km
        if radius_km is not None:
            try:
                radius = float(radius_km)
            except ValueError as exc:
                raise ServiceError(
                    "VALIDATION_ERROR", "radius must be a number", 400, {}
                ) from exc
            if not math.isfinite(radius) or radius <= 0:
                raise ServiceError("VALIDATION_ERROR", "radius must be > 0", 400, {})

        nearby: list[tuple[float, dict[str, Any]]] = []
        remote: list[dict[str, Any]] = []
        for task in self._store.list_tasks(status=STATUS_OPEN):
            if task["is_remote"]:
                remote.append(task)
                continue
            if task["latitude"] is None or task["longitude"] is None:
                continue
            distance = haversine_km(latitude, longitude, task["latitude"], task["longitude"])
            if distance <= radius:
                nearby.append((distance, task))

        nearby.sort(key=lambda pair: pair[0])
        matched = [task for _distance, task in nearby] + remote
        return self._tasks_to_response(matched[: self._max_available_results])

    def list_all_tasks(self) -> list[dict[str, Any]]:
        """Every task (admin)."""
        return self._tasks_to_response(self._store.list_tasks())

    def list_payouts(self) -> list[dict[str, Any]]:
        """Pending worker payouts for completed tasks (admin)."""
        completed = self._store.list_tasks(status=STATUS_COMPLETED)
        users = self._store.get_users([task["worker_id"] for task in completed])
        payouts: list[dict[str, Any]] = []
        for task in completed:
            _commission, payout = compute_settlement(task["price"], self._commission_rate)
            worker = users.get(task["worker_id"])
            payouts.append(
                {
                    "task_id": task["task_id"],
                    "worker_id": task["worker_id"],
                    "worker": worker["name"] if worker is not None else None,
                    "amount": payout,
                    "status": "pending",
                }
            )
        return payouts

    def accept_task(self, identity: Identity, task_id: str) -> dict[str, Any]:
        """
        Claim an open task as a worker. First committed accept wins.

        Error precedence:
        1. FORBIDDEN: caller is not a worker
        2. NOT_AVAILABLE: task missing, not open, or lost the race
        """
        _require_role(identity, ROLE_WORKER)

        changed = self._store.update_task(
            task_id,
            {
                "worker_id": identity.user_id,
                "status": STATUS_ASSIGNED,
                "updated_at": _now_iso(),
            },
            expected_status=STATUS_OPEN,
        )
        if changed == 0:
            raise ServiceError("NOT_AVAILABLE", "Task not available", 400, {})

        self._logger.info(
            "Task accepted", extra={"task_id": task_id, "worker_id": identity.user_id}
        )
        return self._task_to_response(self._load_task(task_id))

    async def deposit_escrow(self, identity: Identity, task_id: str) -> dict[str, Any]:
        """
        Record the client's escrow deposit for an assigned task.

        Error precedence:
        1. FORBIDDEN: caller is not a client
        2. NOT_FOUND: task missing or owned by someone else
        3. ALREADY_DEPOSITED: escrow already recorded
        4. INVALID_TRANSITION: task is not assigned
        """
        _require_role(identity, ROLE_CLIENT)

        task = self._store.get_task(task_id)
        if task is None or task["client_id"] != identity.user_id:
            raise ServiceError("NOT_FOUND", "Task not found", 404, {})

        if task["escrow_deposited"]:
            raise ServiceError("ALREADY_DEPOSITED", "Already deposited", 400, {})

        if task["status"] != STATUS_ASSIGNED:
            raise ServiceError(
                "INVALID_TRANSITION",
                f"Cannot deposit escrow for task in '{task['status']}' status, "
                "must be 'assigned'",
                400,
                {"status": task["status"]},
            )

        transaction_ref = await self._payment_gateway.deposit(
            task_id, identity.user_id, task["price"]
        )

        changed = self._store.update_task(
            task_id,
            {
                "escrow_deposited": 1,
                "escrow_amount": task["price"],
                "escrow_transaction_ref": transaction_ref,
                "updated_at": _now_iso(),
            },
            expected_status=STATUS_ASSIGNED,
            expected_escrow_deposited=False,
        )
        if changed == 0:
            current = self._load_task(task_id)
            if current["escrow_deposited"]:
                raise ServiceError("ALREADY_DEPOSITED", "Already deposited", 400, {})
            raise ServiceError(
                "INVALID_TRANSITION",
                f"Cannot deposit escrow for task in '{current['status']}' status, "
                "must be 'assigned'",
                400,
                {"status": current["status"]},
            )

        self._logger.info(
            "Escrow deposited",
            extra={"task_id": task_id, "amount": task["price"], "transaction_ref": transaction_ref},
        )
        return {
            "message": "Deposit successful",
            "task": self._task_to_response(self._load_task(task_id)),
        }

    def start_task(self, identity: Identity, task_id: str) -> dict[str, Any]:
        """
        Move a funded, assigned task into progress. Either party may start it.

        Error precedence:
        1. NOT_FOUND: task missing
        2. FORBIDDEN: caller is neither the client nor the worker
        3. INVALID_TRANSITION: not assigned, or escrow not deposited
        """
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("NOT_FOUND", "Task not found", 404, {})

        is_client = task["client_id"] == identity.user_id
        is_worker = task["worker_id"] is not None and task["worker_id"] == identity.user_id
        if not is_client and not is_worker:
            raise ServiceError("FORBIDDEN", "Not authorized", 403, {})

        if not can_transition(task["status"], STATUS_IN_PROGRESS) or not task["escrow_deposited"]:
            raise ServiceError(
                "INVALID_TRANSITION",
                "Cannot start task",
                400,
                {"status": task["status"], "escrow_deposited": task["escrow_deposited"]},
            )

        changed = self._store.update_task(
            task_id,
            {"status": STATUS_IN_PROGRESS, "updated_at": _now_iso()},
            expected_status=task["status"],
            expected_escrow_deposited=True,
        )
        if changed == 0:
            raise ServiceError("INVALID_TRANSITION", "Cannot start task", 400, {})

        self._logger.info(
            "Task started", extra={"task_id": task_id, "started_by": identity.user_id}
        )
        return self._task_to_response(self._load_task(task_id))

    def complete_task(self, identity: Identity, task_id: str) -> dict[str, Any]:
        """
        Mark an in-progress task completed and credit the worker.

        The status change, completed-task counter and badge award commit
        together or not at all. Commission and payout are reported, not
        stored.

        Error precedence:
        1. FORBIDDEN: caller is not a worker
        2. NOT_FOUND: task missing or assigned to another worker
        3. INVALID_TRANSITION: task is not in progress
        4. WORKER_UPDATE_FAILED: worker stats could not be written (rolled back)
        """
        _require_role(identity, ROLE_WORKER)

        task = self._store.get_task(task_id)
        if task is None or task["worker_id"] != identity.user_id:
            raise ServiceError("NOT_FOUND", "Task not found", 404, {})

        if not can_transition(task["status"], STATUS_COMPLETED):
            raise ServiceError("INVALID_TRANSITION", "Task not in progress", 400, {})

        completed_at = _now_iso()
        with self._store.transaction():
            changed = self._store.update_task(
                task_id,
                {
                    "status": STATUS_COMPLETED,
                    "completed_at": completed_at,
                    "updated_at": completed_at,
                },
                expected_status=task["status"],
            )
            if changed == 0:
                raise ServiceError("INVALID_TRANSITION", "Task not in progress", 400, {})
            worker_stats = self._credit_worker(identity.user_id)

        commission, payout = compute_settlement(task["price"], self._commission_rate)
        self._logger.info(
            "Task completed",
            extra={
                "task_id": task_id,
                "worker_id": identity.user_id,
                "completed_tasks": worker_stats["completed_tasks"],
                "payout": payout,
            },
        )
        return {
            "task": self._task_to_response(self._load_task(task_id)),
            "commission": commission,
            "payout": payout,
        }

    def review_task(self, identity: Identity, task_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """
        Rate the worker of a completed task and refresh their reliability score.

        The review insert and score recompute commit together.

        Error precedence:
        1. FORBIDDEN: caller is not a client
        2. VALIDATION_ERROR: rating not an integer 1-5, comment invalid
        3. NOT_FOUND: task missing, owned by someone else, or not completed
        4. ALREADY_REVIEWED: caller already reviewed this task
        5. WORKER_UPDATE_FAILED: score could not be written (rolled back)
        """
        _require_role(identity, ROLE_CLIENT)

        rating = parse_rating(body.get("rating"))
        if rating is None:
            raise ServiceError(
                "VALIDATION_ERROR",
                "Rating must be an integer between 1 and 5",
                400,
                {"field": "rating"},
            )

        comment = body.get("comment")
        if comment is not None:
            if not isinstance(comment, str):
                raise ServiceError(
                    "VALIDATION_ERROR", "Comment must be a string", 400, {"field": "comment"}
                )
            if len(comment) > self._max_comment_length:
                raise ServiceError(
                    "VALIDATION_ERROR",
                    f"Comment exceeds maximum length of {self._max_comment_length} characters",
                    400,
                    {"field": "comment", "max_length": self._max_comment_length},
                )

        task = self._store.get_task(task_id)
        if (
            task is None
            or task["client_id"] != identity.user_id
            or task["status"] != STATUS_COMPLETED
        ):
            raise ServiceError("NOT_FOUND", "Task not found or not completed", 404, {})

        worker_id = str(task["worker_id"])
        with self._store.transaction():
            try:
                self._store.insert_review(
                    {
                        "review_id": f"r-{uuid.uuid4()}",
                        "task_id": task_id,
                        "reviewer_id": identity.user_id,
                        "rating": rating,
                        "comment": comment,
                        "created_at": _now_iso(),
                    }
                )
            except DuplicateReviewError as exc:
                raise ServiceError(
                    "ALREADY_REVIEWED", "Task has already been reviewed", 400, {}
                ) from exc
            score = self._rescore_worker(worker_id)

        self._logger.info(
            "Task reviewed",
            extra={
                "task_id": task_id,
                "worker_id": worker_id,
                "rating": rating,
                "reliability_score": score,
            },
        )
        return self._task_to_response(self._load_task(task_id))

    def get_stats(self) -> dict[str, Any]:
        """Task and user counts for the health endpoint."""
        counts = self._store.count_tasks_by_status()
        return {
            "total_tasks": self._store.count_tasks(),
            "total_users": self._store.count_users(),
            "tasks_by_status": {status: counts.get(status, 0) for status in TASK_STATUSES},
        }

    def close(self) -> None:
        """Close the underlying store."""
        self._store.close()
