# tests/test_overdue.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from duekeeper.tasks.overdue import (
    AdaptiveDelayPolicy,
    days_until_due,
    is_overdue_violation,
    start_of_day_ts,
)
from duekeeper.tasks.task_models import TaskStatus

UTC = timezone.utc
NOW = datetime(2026, 10, 19, 15, 30, tzinfo=UTC).timestamp()
MIDNIGHT = datetime(2026, 10, 19, tzinfo=UTC).timestamp()
MIN = 60.0
HOUR = 3600.0


def test_start_of_day_truncates_to_utc_midnight() -> None:
    assert start_of_day_ts(NOW) == MIDNIGHT
    assert start_of_day_ts(MIDNIGHT) == MIDNIGHT
    assert start_of_day_ts(MIDNIGHT - 1) == MIDNIGHT - 24 * HOUR


def test_start_of_day_uses_given_zone() -> None:
    minus5 = timezone(timedelta(hours=-5))
    # 15:30 UTC is 10:30 at UTC-5, whose midnight is 05:00 UTC.
    assert start_of_day_ts(NOW, minus5) == MIDNIGHT + 5 * HOUR


@pytest.mark.parametrize(
    "due_at",
    [MIDNIGHT, MIDNIGHT + 1, NOW, MIDNIGHT + 24 * HOUR - 1],
    ids=["midnight", "just-after-midnight", "now", "end-of-day"],
)
def test_due_today_is_never_overdue(due_at: float) -> None:
    assert is_overdue_violation(TaskStatus.ACTIVE, due_at, NOW) is False


def test_due_before_today_is_overdue() -> None:
    assert is_overdue_violation(TaskStatus.ACTIVE, MIDNIGHT - 1, NOW) is True
    assert is_overdue_violation(TaskStatus.ACTIVE, MIDNIGHT - 30 * 24 * HOUR, NOW) is True


def test_only_active_tasks_with_due_date_violate() -> None:
    yesterday = MIDNIGHT - 12 * HOUR
    assert is_overdue_violation(TaskStatus.ACTIVE, None, NOW) is False
    assert is_overdue_violation(TaskStatus.COMPLETED, yesterday, NOW) is False
    assert is_overdue_violation(TaskStatus.OVERDUE, yesterday, NOW) is False
    assert is_overdue_violation("active", yesterday, NOW) is True


def test_unknown_status_is_a_programming_error() -> None:
    with pytest.raises(ValueError):
        is_overdue_violation("pending", MIDNIGHT - 1, NOW)


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (30 * MIN, 5 * MIN),
        (1 * HOUR, 5 * MIN),
        (3 * HOUR, 15 * MIN),
        (6 * HOUR, 15 * MIN),
        (20 * HOUR, 30 * MIN),
        (24 * HOUR, 30 * MIN),
        (3 * 24 * HOUR, 60 * MIN),
    ],
)
def test_adaptive_delay_tiers(offset: float, expected: float) -> None:
    assert AdaptiveDelayPolicy().delay_for(NOW + offset, NOW) == expected


def test_adaptive_delay_without_upcoming_task() -> None:
    assert AdaptiveDelayPolicy().delay_for(None, NOW) == 60 * MIN


def test_adaptive_delay_custom_tiers() -> None:
    policy = AdaptiveDelayPolicy(tiers=((10.0, 0.5),), idle_delay=2.0)
    assert policy.delay_for(NOW + 5, NOW) == 0.5
    assert policy.delay_for(NOW + 50, NOW) == 2.0
    assert policy.delay_for(None, NOW) == 2.0


def test_days_until_due() -> None:
    assert days_until_due(None, NOW) is None
    assert days_until_due(NOW + 2 * 24 * HOUR, NOW) == 2
    assert days_until_due(NOW + 1, NOW) == 1
    assert days_until_due(NOW - 36 * HOUR, NOW) == -1
