# src/duekeeper/tasks/overdue.py

"""
Overdue rules.

Pure functions, no store access:
- start_of_day_ts(): midnight boundary in the reference zone,
- is_overdue_violation(): does an active task need to become overdue,
- AdaptiveDelayPolicy: how long to wait before the next sweep.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from .task_models import TaskStatus

UTC = timezone.utc

_MINUTE = 60.0
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


def reference_tz(name: str | None) -> tzinfo:
    """Zone used for day boundaries. "UTC" (the default) needs no tz database."""
    if not name or name.strip().upper() == "UTC":
        return UTC
    return ZoneInfo(name.strip())


def start_of_day_ts(now_ts: float, tz: tzinfo = UTC) -> float:
    """Epoch seconds of the midnight that starts now_ts's calendar day in tz."""
    now = datetime.fromtimestamp(now_ts, tz=tz)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()


def is_overdue_violation(
    status: TaskStatus | str,
    due_at: float | None,
    now_ts: float,
    tz: tzinfo = UTC,
) -> bool:
    """
    True iff an active task with a due date is due before today.

    A task due at any time today is never a violation. Passing something that is
    not a TaskStatus value raises ValueError.
    """
    status = TaskStatus(status)
    if status is not TaskStatus.ACTIVE or due_at is None:
        return False
    return due_at < start_of_day_ts(now_ts, tz)


def days_until_due(due_at: float | None, now_ts: float) -> int | None:
    if due_at is None:
        return None
    return math.ceil((due_at - now_ts) / _DAY)


@dataclass(frozen=True, slots=True)
class AdaptiveDelayPolicy:
    """
    Maps "time until the nearest upcoming due date" to a polling delay.

    tiers: (horizon_seconds, delay_seconds), checked in order; first horizon that
    covers the remaining time wins. idle_delay is used when nothing is upcoming or
    the due date is beyond the last horizon.
    """

    tiers: tuple[tuple[float, float], ...] = (
        (1 * _HOUR, 5 * _MINUTE),
        (6 * _HOUR, 15 * _MINUTE),
        (24 * _HOUR, 30 * _MINUTE),
    )
    idle_delay: float = 1 * _HOUR

    def delay_for(self, next_due_ts: float | None, now_ts: float) -> float:
        if next_due_ts is None:
            return self.idle_delay

        remaining = next_due_ts - now_ts
        for horizon, delay in self.tiers:
            if remaining <= horizon:
                return delay
        return self.idle_delay
