# src/duekeeper/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store and the overdue scheduler into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.overdue import reference_tz
from ..tasks.task_scheduler import OverdueScheduler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings(). The scheduler is built but not started.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path)
    scheduler = OverdueScheduler(store, tz=reference_tz(settings.timezone))

    logger.debug("State ready db=%s tz=%s", settings.tasks_db_path, settings.timezone)
    return AppState(
        settings=settings,
        task_store=store,
        scheduler=scheduler,
        user_id=settings.default_user_id,
    )
