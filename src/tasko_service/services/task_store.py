"""SQLite-backed storage for users, tasks, and reviews."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class DuplicateUserError(Exception):
    """Raised when inserting a user whose email is already registered."""


class DuplicateReviewError(Exception):
    """Raised when a reviewer has already reviewed the task."""


class TaskStore:
    """
    SQLite-backed storage for users, tasks, and reviews.

    Every public method is serialised by one re-entrant lock. Single-row
    status transitions are conditional UPDATEs; multi-entity changes run
    inside ``transaction()`` so Task and User rows commit or roll back
    together.
    """

    _USER_COLUMNS: tuple[str, ...] = (
        "user_id",
        "name",
        "email",
        "password_hash",
        "phone",
        "role",
        "skills",
        "availability",
        "bio",
        "is_verified",
        "badges",
        "reliability_score",
        "completed_tasks",
        "longitude",
        "latitude",
        "address",
        "created_at",
        "updated_at",
    )
    _USER_JSON_COLUMNS: frozenset[str] = frozenset({"skills", "badges"})

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "client_id",
        "worker_id",
        "title",
        "description",
        "category",
        "price",
        "deadline",
        "is_remote",
        "longitude",
        "latitude",
        "address",
        "status",
        "escrow_deposited",
        "escrow_amount",
        "escrow_transaction_ref",
        "completed_at",
        "created_at",
        "updated_at",
    )
    _REVIEW_COLUMNS: tuple[str, ...] = (
        "review_id",
        "task_id",
        "reviewer_id",
        "rating",
        "comment",
        "created_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._transaction_depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    phone TEXT NOT NULL,
                    role TEXT NOT NULL,
                    skills TEXT NOT NULL DEFAULT '[]',
                    availability TEXT NOT NULL DEFAULT 'anytime',
                    bio TEXT,
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    badges TEXT NOT NULL DEFAULT '[]',
                    reliability_score REAL NOT NULL DEFAULT 0,
                    completed_tasks INTEGER NOT NULL DEFAULT 0,
                    longitude REAL,
                    latitude REAL,
                    address TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL REFERENCES users (user_id),
                    worker_id TEXT REFERENCES users (user_id),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    price REAL NOT NULL CHECK (price >= 0),
                    deadline TEXT NOT NULL,
                    is_remote INTEGER NOT NULL DEFAULT 0,
                    longitude REAL,
                    latitude REAL,
                    address TEXT,
                    status TEXT NOT NULL DEFAULT 'open',
                    escrow_deposited INTEGER NOT NULL DEFAULT 0,
                    escrow_amount REAL NOT NULL DEFAULT 0,
                    escrow_transaction_ref TEXT,
                    completed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reviews (
                    review_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks (task_id),
                    reviewer_id TEXT NOT NULL,
                    rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    comment TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (task_id, reviewer_id)
                );

                CREATE INDEX IF NOT EXISTS ix_tasks_status ON tasks (status);
                CREATE INDEX IF NOT EXISTS ix_tasks_client ON tasks (client_id);
                CREATE INDEX IF NOT EXISTS ix_tasks_worker ON tasks (worker_id);
                CREATE INDEX IF NOT EXISTS ix_tasks_created ON tasks (created_at);
                CREATE INDEX IF NOT EXISTS ix_reviews_task ON reviews (task_id);
                """
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run several store calls as one atomic unit.

        Nested calls join the outermost transaction. Any exception rolls the
        whole unit back and propagates.
        """
        with self._lock:
            if self._transaction_depth > 0:
                self._transaction_depth += 1
                try:
                    yield
                finally:
                    self._transaction_depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._transaction_depth = 1
            try:
                yield
            except BaseException:
                self._transaction_depth = 0
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._transaction_depth = 0
            self._db.commit()

    def _commit(self) -> None:
        if self._transaction_depth == 0:
            self._db.commit()

    def _rollback(self) -> None:
        if self._transaction_depth == 0:
            with contextlib.suppress(sqlite3.Error):
                self._db.execute("ROLLBACK")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def _row_to_user(self, row: sqlite3.Row) -> dict[str, Any]:
        user = {column: row[column] for column in self._USER_COLUMNS}
        for column in self._USER_JSON_COLUMNS:
            user[column] = json.loads(user[column])
        user["is_verified"] = bool(user["is_verified"])
        return user

    def _encode_user_value(self, column: str, value: Any) -> Any:
        if column in self._USER_JSON_COLUMNS:
            return json.dumps(list(value))
        if column == "is_verified":
            return int(bool(value))
        return value

    def insert_user(self, user_data: dict[str, Any]) -> None:
        """Insert a new user row."""
        values = tuple(
            self._encode_user_value(column, user_data[column]) for column in self._USER_COLUMNS
        )
        placeholders = ", ".join("?" for _ in self._USER_COLUMNS)
        query = f"INSERT INTO users ({', '.join(self._USER_COLUMNS)}) VALUES ({placeholders})"  # nosec B608

        with self._lock:
            try:
                self._db.execute(query, values)
                self._commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                if "unique" in str(exc).lower():
                    raise DuplicateUserError(
                        f"A user with email={user_data['email']} already exists"
                    ) from exc
                raise

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user by ID."""
        with self._lock:
            row = self._db.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        """Fetch a user by (normalised) email."""
        with self._lock:
            row = self._db.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_users(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch several users at once, keyed by user_id."""
        if not user_ids:
            return {}
        unique_ids = sorted(set(user_ids))
        placeholders = ", ".join("?" for _ in unique_ids)
        query = f"SELECT * FROM users WHERE user_id IN ({placeholders})"  # nosec B608
        with self._lock:
            rows = self._db.execute(query, unique_ids).fetchall()
        return {str(row["user_id"]): self._row_to_user(row) for row in rows}

    def list_users(self) -> list[dict[str, Any]]:
        """List every user, newest first."""
        with self._lock:
            rows = self._db.execute("SELECT * FROM users ORDER BY created_at DESC").fetchall()
        return [self._row_to_user(row) for row in rows]

    def update_user(self, user_id: str, updates: dict[str, Any]) -> int:
        """Update user columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._USER_COLUMNS or column == "user_id" for column in updates):
            msg = "Attempted to update unknown user column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            self._encode_user_value(column, value) for column, value in updates.items()
        ]
        params.append(user_id)
        query = "UPDATE users SET " + set_clause + " WHERE user_id = ?"  # nosec B608

        with self._lock:
            cursor = self._db.execute(query, params)
            self._commit()
        return int(cursor.rowcount)

    def count_users(self) -> int:
        """Count registered users."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM users").fetchone()
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        task["is_remote"] = bool(task["is_remote"])
        task["escrow_deposited"] = bool(task["escrow_deposited"])
        return task

    def _attach_reviews(self, tasks: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not tasks:
            return tasks
        task_ids = [str(task["task_id"]) for task in tasks]
        placeholders = ", ".join("?" for _ in task_ids)
        query = (
            "SELECT review_id, task_id, reviewer_id, rating, comment, created_at FROM reviews "  # nosec B608
            f"WHERE task_id IN ({placeholders}) ORDER BY created_at, rowid"
        )
        with self._lock:
            rows = self._db.execute(query, task_ids).fetchall()

        by_task: dict[str, list[dict[str, Any]]] = {task_id: [] for task_id in task_ids}
        for row in rows:
            by_task[str(row["task_id"])].append(
                {column: row[column] for column in self._REVIEW_COLUMNS}
            )
        for task in tasks:
            task["reviews"] = by_task[str(task["task_id"])]
        return tasks

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(task_data[column] for column in self._TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in self._TASK_COLUMNS)
        query = f"INSERT INTO tasks ({', '.join(self._TASK_COLUMNS)}) VALUES ({placeholders})"  # nosec B608

        with self._lock:
            try:
                self._db.execute(query, values)
                self._commit()
            except sqlite3.Error:
                self._rollback()
                raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID, reviews included."""
        with self._lock:
            row = self._db.execute("SELECT * FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._attach_reviews([self._row_to_task(row)])[0]

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
        expected_escrow_deposited: bool | None = None,
    ) -> int:
        """
        Update task columns and return the number of affected rows.

        The expected_* arguments turn the write into a compare-and-swap:
        zero affected rows means the task is missing or the predicate no
        longer holds.
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS or column == "task_id" for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        if expected_escrow_deposited is not None:
            query += " AND escrow_deposited = ?"
            params.append(int(expected_escrow_deposited))

        with self._lock:
            cursor = self._db.execute(query, params)
            self._commit()
        return int(cursor.rowcount)

    def list_tasks(
        self,
        status: str | None = None,
        client_id: str | None = None,
        worker_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional AND filters, newest first."""
        query = "SELECT * FROM tasks"
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        if worker_id is not None:
            clauses.append("worker_id = ?")
            params.append(worker_id)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, rowid DESC"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return self._attach_reviews([self._row_to_task(row) for row in rows])

    def list_worker_board(self, worker_id: str) -> list[dict[str, Any]]:
        """Tasks assigned to the worker plus every open task, newest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM tasks WHERE worker_id = ? OR status = 'open' "
                "ORDER BY created_at DESC, rowid DESC",
                (worker_id,),
            ).fetchall()
        return self._attach_reviews([self._row_to_task(row) for row in rows])

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def insert_review(self, review_data: dict[str, Any]) -> None:
        """Append a review to a task."""
        values = tuple(review_data[column] for column in self._REVIEW_COLUMNS)
        with self._lock:
            try:
                self._db.execute(
                    """
                    INSERT INTO reviews (review_id, task_id, reviewer_id, rating, comment, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                self._commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                if "unique" in str(exc).lower():
                    raise DuplicateReviewError(
                        "This reviewer has already reviewed this task"
                    ) from exc
                raise

    def list_worker_ratings(self, worker_id: str) -> list[int]:
        """Every rating on every completed task where the user is the worker."""
        with self._lock:
            rows = self._db.execute(
                """
                SELECT r.rating FROM reviews r
                JOIN tasks t ON t.task_id = r.task_id
                WHERE t.worker_id = ? AND t.status = 'completed'
                ORDER BY r.created_at, r.rowid
                """,
                (worker_id,),
            ).fetchall()
        return [int(row[0]) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
