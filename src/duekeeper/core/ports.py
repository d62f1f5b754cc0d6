# src/duekeeper/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The overdue engine depends on Protocols instead of the concrete SQLite store.
This keeps storage swappable and lets tests drive the engine with in-memory fakes.
"""

from typing import Any, Protocol


class OverdueTaskRepo(Protocol):
    """The narrow slice of the task store the overdue engine needs."""

    def find_overdue_candidates(self, *, start_of_day_ts: float, user_id: str | None = None) -> list[Any]: ...
    def bulk_mark_overdue(self, *, start_of_day_ts: float, user_id: str | None = None) -> int: ...
    def find_nearest_upcoming_due(self, *, now_ts: float, user_id: str | None = None) -> Any | None: ...


class ErrorSink(Protocol):
    """
    Receives errors raised by timer-driven sweeps.

    source is "initial", "fallback", "adaptive" or "rearm".
    """

    def __call__(self, exc: BaseException, source: str) -> None: ...


class TaskRepo(OverdueTaskRepo, Protocol):
    # Task operations (console commands / task_api)
    def add_task(
            self,
            *,
            user_id: str,
            title: str,
            description: str = "",
            priority: Any = None,  # TaskPriority (kept as Any to avoid import coupling)
            due_at: float | None = None,
            status: Any = None,  # TaskStatus
    ) -> int: ...

    def get_task(self, task_id: int) -> Any | None: ...
    def list_tasks_for_user(
            self,
            user_id: str,
            *,
            status: Any | None = None,
            priority: Any | None = None,
            limit: int = 10,
            offset: int = 0,
    ) -> list[Any]: ...
    def count_tasks_for_user(self, user_id: str, *, status: Any | None = None, priority: Any | None = None) -> int: ...
    def task_stats(self, user_id: str) -> dict[str, int]: ...
    def update_task_status(self, task_id: int, new_status: Any) -> None: ...
    def update_task_fields(self, task_id: int, **fields: Any) -> None: ...
    def delete_task(self, task_id: int) -> bool: ...
    def count_tasks(self) -> int: ...
