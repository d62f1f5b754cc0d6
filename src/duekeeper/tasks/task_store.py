# src/duekeeper/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from .task_models import Task, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

_UNSET: Any = object()

TITLE_MAX_LEN = 100
DESCRIPTION_MAX_LEN = 500

# Shared by find_overdue_candidates() and bulk_mark_overdue() so both see the same set.
_OVERDUE_PREDICATE = "status = 'active' AND due_at IS NOT NULL AND due_at < ?"


def _validate_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValueError("title is required")
    if len(title) > TITLE_MAX_LEN:
        raise ValueError(f"title is too long (max {TITLE_MAX_LEN} characters)")
    return title


def _validate_description(description: str) -> str:
    description = (description or "").strip()
    if len(description) > DESCRIPTION_MAX_LEN:
        raise ValueError(f"description is too long (max {DESCRIPTION_MAX_LEN} characters)")
    return description


def _scope_clause(user_id: str | None) -> tuple[str, tuple[Any, ...]]:
    if user_id is None:
        return "", ()
    return " AND user_id = ?", (user_id,)


class TaskStore:
    """
    SQLite task store.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Status writes keep completed_at in step with status: it is set when a task
    enters "completed" and cleared when it leaves.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        # WAL is unavailable on some filesystems; the default journal still works.
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'active',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    due_at REAL,
                    completed_at REAL
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("description", "TEXT NOT NULL DEFAULT ''")
            add_col("priority", "TEXT NOT NULL DEFAULT 'medium'")
            add_col("due_at", "REAL")
            add_col("completed_at", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_due ON tasks(status, due_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks(user_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_created ON tasks(user_id, created_at)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            title=str(row["title"]),
            description=str(row["description"] or ""),
            status=TaskStatus.from_db(row["status"]),
            priority=TaskPriority.from_db(row["priority"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            due_at=float(row["due_at"]) if row["due_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    # ---- overdue engine API ----

    def find_overdue_candidates(self, *, start_of_day_ts: float, user_id: str | None = None) -> list[Task]:
        """Active tasks with a due date before start_of_day_ts (optionally one user's)."""
        scope_sql, scope_params = _scope_clause(user_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT * FROM tasks WHERE {_OVERDUE_PREDICATE}{scope_sql} ORDER BY due_at ASC",
                (float(start_of_day_ts), *scope_params),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def bulk_mark_overdue(self, *, start_of_day_ts: float, user_id: str | None = None) -> int:
        """
        Set status=overdue on every row matching the overdue predicate.

        The WHERE clause is evaluated at update time, so a row edited after the
        candidate read (e.g. due date moved forward) is not overwritten.
        Returns the number of rows changed.
        """
        scope_sql, scope_params = _scope_clause(user_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE tasks SET status = 'overdue', updated_at = ? WHERE {_OVERDUE_PREDICATE}{scope_sql}",
                (time.time(), float(start_of_day_ts), *scope_params),
            )
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def find_nearest_upcoming_due(self, *, now_ts: float, user_id: str | None = None) -> Task | None:
        """The active task with the earliest due date at or after now_ts."""
        scope_sql, scope_params = _scope_clause(user_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE status = 'active'
                  AND due_at IS NOT NULL
                  AND due_at >= ?{scope_sql}
                ORDER BY due_at ASC
                    LIMIT 1
                """,
                (float(now_ts), *scope_params),
            )
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    # ---- CRUD ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        *,
        user_id: str,
        title: str,
        description: str = "",
        priority: TaskPriority = TaskPriority.MEDIUM,
        due_at: float | None = None,
        status: TaskStatus = TaskStatus.ACTIVE,
    ) -> int:
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")
        title = _validate_title(title)
        description = _validate_description(description)
        status = TaskStatus(status)
        priority = TaskPriority(priority)

        now = time.time()
        completed_at = now if status is TaskStatus.COMPLETED else None

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO tasks(
                    user_id, title, description, status, priority,
                    created_at, updated_at, due_at, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id.strip(),
                    title,
                    description,
                    status.value,
                    priority.value,
                    now,
                    now,
                    float(due_at) if due_at is not None else None,
                    completed_at,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
            logger.debug(
                "Task added id=%s user=%s status=%s due_at=%s",
                task_id,
                user_id,
                status.value,
                due_at,
            )
            return task_id
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks_for_user(
        self,
        user_id: str,
        *,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Task]:
        """A user's tasks, newest first, optionally filtered by status/priority."""
        where, params = self._user_filter(user_id, status, priority)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE {where}
                ORDER BY created_at DESC, id DESC
                    LIMIT ? OFFSET ?
                """,
                (*params, int(limit), max(0, int(offset))),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def count_tasks_for_user(
        self,
        user_id: str,
        *,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
    ) -> int:
        where, params = self._user_filter(user_id, status, priority)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT COUNT(*) FROM tasks WHERE {where}", params)
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    @staticmethod
    def _user_filter(
        user_id: str,
        status: TaskStatus | None,
        priority: TaskPriority | None,
    ) -> tuple[str, tuple[Any, ...]]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if status is not None:
            clauses.append("status = ?")
            params.append(TaskStatus(status).value)
        if priority is not None:
            clauses.append("priority = ?")
            params.append(TaskPriority(priority).value)
        return " AND ".join(clauses), tuple(params)

    def task_stats(self, user_id: str) -> dict[str, int]:
        """Counts per status for one user, plus "total"."""
        result = {"total": 0, **{s.value: 0 for s in TaskStatus}}
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT status, COUNT(*) AS n FROM tasks WHERE user_id = ? GROUP BY status",
                (user_id,),
            )
            for row in cur.fetchall():
                result[str(row["status"])] = int(row["n"])
                result["total"] += int(row["n"])
            return result
        finally:
            conn.close()

    def update_task_status(self, task_id: int, new_status: TaskStatus) -> None:
        self.update_task_fields(task_id, status=new_status)

    def update_task_fields(
        self,
        task_id: int,
        *,
        title: str = _UNSET,
        description: str = _UNSET,
        priority: TaskPriority = _UNSET,
        status: TaskStatus = _UNSET,
        due_at: float | None = _UNSET,
    ) -> None:
        """
        Partial update. Only passed fields are written; due_at=None clears the date.

        A status change also writes completed_at (now when entering "completed",
        NULL otherwise).
        """
        fields: list[str] = []
        params: list[Any] = []

        if title is not _UNSET:
            fields.append("title = ?")
            params.append(_validate_title(title))

        if description is not _UNSET:
            fields.append("description = ?")
            params.append(_validate_description(description))

        if priority is not _UNSET:
            fields.append("priority = ?")
            params.append(TaskPriority(priority).value)

        now = time.time()

        if status is not _UNSET:
            status = TaskStatus(status)
            fields.append("status = ?")
            params.append(status.value)
            if status is TaskStatus.COMPLETED:
                # Keep the original completion time if it is already completed.
                fields.append("completed_at = COALESCE(completed_at, ?)")
                params.append(now)
            else:
                fields.append("completed_at = NULL")

        if due_at is not _UNSET:
            fields.append("due_at = ?")
            params.append(float(due_at) if due_at is not None else None)

        if not fields:
            return

        fields.append("updated_at = ?")
        params.append(now)
        params.append(int(task_id))

        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"

        conn = self._get_conn()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def delete_task(self, task_id: int) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM tasks WHERE id = ?", (int(task_id),))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()
