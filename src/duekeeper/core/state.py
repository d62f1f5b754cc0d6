# src/duekeeper/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..tasks.task_scheduler import OverdueScheduler
from .ports import TaskRepo


@dataclass
class AppState:
    # Settings object (config.Settings or a test SimpleNamespace).
    settings: object

    task_store: TaskRepo
    scheduler: OverdueScheduler

    # Acting user for console commands.
    user_id: str = "local"
