# src/duekeeper/tasks/sweeper.py

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import tzinfo

from ..core.ports import OverdueTaskRepo
from .overdue import UTC, start_of_day_ts

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SweepResult:
    modified_count: int
    task_ids: tuple[int, ...]


class ConsistencySweeper:
    """
    One full overdue pass: active tasks due before today become overdue.

    At most one sweep runs at a time per sweeper instance; concurrent callers
    wait for the running one to finish and then do their own (cheap, idempotent)
    pass. Store errors propagate unchanged.
    """

    def __init__(
        self,
        store: OverdueTaskRepo,
        *,
        clock: Callable[[], float] = time.time,
        tz: tzinfo = UTC,
    ) -> None:
        self._store = store
        self._clock = clock
        self._tz = tz
        self._lock = threading.Lock()

    def sweep(self, user_id: str | None = None) -> SweepResult:
        with self._lock:
            boundary = start_of_day_ts(self._clock(), self._tz)

            candidates = self._store.find_overdue_candidates(start_of_day_ts=boundary, user_id=user_id)
            modified = self._store.bulk_mark_overdue(start_of_day_ts=boundary, user_id=user_id)

        result = SweepResult(modified_count=int(modified), task_ids=tuple(int(t.id) for t in candidates))
        if result.modified_count > 0:
            logger.info(
                "Marked %d task(s) overdue scope=%s ids=%s",
                result.modified_count,
                user_id or "all",
                list(result.task_ids),
            )
        else:
            logger.debug("Overdue sweep found nothing scope=%s", user_id or "all")
        return result
