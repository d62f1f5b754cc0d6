# src/duekeeper/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "overdue" is only entered from "active" by the overdue sweep.
    - An unknown raw value is a defect, so from_db() raises instead of guessing.
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.ACTIVE
        return cls(raw)


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        return cls(raw)


@dataclass(slots=True)
class Task:
    id: int
    user_id: str
    title: str
    description: str

    status: TaskStatus
    priority: TaskPriority

    created_at: float
    updated_at: float
    due_at: float | None
    completed_at: float | None = None
