# tests/conftest.py

from __future__ import annotations

import time
from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from duekeeper.core.state import AppState
from duekeeper.tasks.overdue import start_of_day_ts
from duekeeper.tasks.task_scheduler import OverdueScheduler
from duekeeper.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the task modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="duekeeper-test",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        timezone="UTC",
        base_interval_minutes=30.0,
        scheduler_enabled=False,
        default_user_id="u1",
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore) -> Iterator[AppState]:
    """
    AppState wired with a real SQLite store and an unstarted scheduler.

    NOTE: the store is real because the overdue predicate lives in its SQL.
    """
    scheduler = OverdueScheduler(store)
    yield AppState(settings=settings, task_store=store, scheduler=scheduler, user_id="u1")
    scheduler.stop()


@pytest.fixture()
def today() -> float:
    """Start of the current UTC day."""
    return start_of_day_ts(time.time())
