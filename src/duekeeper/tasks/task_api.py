# src/duekeeper/tasks/task_api.py

"""
Task operations used by request handlers and console commands.

Every write that creates a due date or changes one calls
scheduler.trigger_immediate_check(user_id) before returning, so the returned task
already reflects its overdue status.
"""

from __future__ import annotations

import logging
import time
from datetime import tzinfo
from typing import Any

from ..core.state import AppState
from .overdue import is_overdue_violation, reference_tz
from .task_models import Task, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class TaskNotFoundError(LookupError):
    pass


def _state_tz(state: AppState) -> tzinfo:
    return reference_tz(getattr(state.settings, "timezone", None))


def _owned_task(state: AppState, task_id: int, user_id: str) -> Task:
    task = state.task_store.get_task(task_id)
    if task is None or task.user_id != user_id:
        raise TaskNotFoundError(f"Task {task_id} not found")
    return task


def _reload(state: AppState, task_id: int) -> Task:
    task = state.task_store.get_task(task_id)
    if task is None:
        raise TaskNotFoundError(f"Task {task_id} not found")
    return task


def create_task(
    state: AppState,
    *,
    user_id: str,
    title: str,
    description: str = "",
    priority: TaskPriority = TaskPriority.MEDIUM,
    due_at: float | None = None,
) -> Task:
    task_id = state.task_store.add_task(
        user_id=user_id,
        title=title,
        description=description,
        priority=priority,
        due_at=due_at,
    )
    logger.info("CREATE_TASK user=%s task_id=%s due_at=%s", user_id, task_id, due_at)

    if due_at is not None:
        state.scheduler.trigger_immediate_check(user_id)

    return _reload(state, task_id)


def update_task(
    state: AppState,
    task_id: int,
    *,
    user_id: str,
    title: str = _UNSET,
    description: str = _UNSET,
    priority: TaskPriority = _UNSET,
    status: TaskStatus = _UNSET,
    due_at: float | None = _UNSET,
) -> Task:
    """
    Edit a task owned by user_id. Only passed fields change; due_at=None clears it.

    Status rules:
    - "overdue" cannot be set by hand, only the sweep sets it
    - an overdue task whose due date moves to today or later (or is cleared) is
      reactivated, unless the same edit sets a status explicitly
    """
    task = _owned_task(state, task_id, user_id)

    changes: dict[str, Any] = {}
    if title is not _UNSET:
        changes["title"] = title
    if description is not _UNSET:
        changes["description"] = description
    if priority is not _UNSET:
        changes["priority"] = TaskPriority(priority)
    if status is not _UNSET:
        status = TaskStatus(status)
        if status is TaskStatus.OVERDUE:
            raise ValueError("status 'overdue' is set by the scheduler, not by edits")
        changes["status"] = status

    due_changed = due_at is not _UNSET and due_at != task.due_at
    if due_at is not _UNSET:
        changes["due_at"] = due_at

    if due_changed and "status" not in changes and task.status is TaskStatus.OVERDUE:
        # Reactivate unless the task would be overdue again as soon as it is active.
        if not is_overdue_violation(TaskStatus.ACTIVE, due_at, time.time(), _state_tz(state)):
            changes["status"] = TaskStatus.ACTIVE

    if not changes:
        return task

    state.task_store.update_task_fields(task_id, **changes)
    logger.info("UPDATE_TASK user=%s task_id=%s fields=%s", user_id, task_id, sorted(changes))

    reactivated = changes.get("status") is TaskStatus.ACTIVE
    has_due = (due_at if due_at is not _UNSET else task.due_at) is not None
    if has_due and (due_changed or reactivated):
        state.scheduler.trigger_immediate_check(user_id)

    return _reload(state, task_id)


def toggle_task(state: AppState, task_id: int, *, user_id: str) -> Task:
    """completed -> active, anything else -> completed."""
    task = _owned_task(state, task_id, user_id)
    if task.status is TaskStatus.COMPLETED:
        return update_task(state, task_id, user_id=user_id, status=TaskStatus.ACTIVE)
    return update_task(state, task_id, user_id=user_id, status=TaskStatus.COMPLETED)


def delete_task(state: AppState, task_id: int, *, user_id: str) -> None:
    _owned_task(state, task_id, user_id)
    state.task_store.delete_task(task_id)
    logger.info("DELETE_TASK user=%s task_id=%s", user_id, task_id)


def list_tasks(
    state: AppState,
    *,
    user_id: str,
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Task], int]:
    """One page of the user's tasks (newest first) and the total matching count."""
    page = max(1, int(page))
    limit = max(1, int(limit))
    tasks = state.task_store.list_tasks_for_user(
        user_id,
        status=status,
        priority=priority,
        limit=limit,
        offset=(page - 1) * limit,
    )
    total = state.task_store.count_tasks_for_user(user_id, status=status, priority=priority)
    return tasks, total


def task_stats(state: AppState, *, user_id: str) -> dict[str, int]:
    return state.task_store.task_stats(user_id)
