# src/duekeeper/tasks/task_scheduler.py

from __future__ import annotations

"""
Overdue scheduler.

Keeps task statuses consistent with the clock using two timers:
- a fallback thread that sweeps every base interval no matter what,
- a single-shot adaptive timer whose delay shrinks as the nearest due date
  gets closer (see AdaptiveDelayPolicy).

Write paths call trigger_immediate_check() to sweep right away and re-arm the
adaptive timer, since they may have changed the set of upcoming due dates.

stop() prevents future sweeps; it does not cancel a sweep that is already running.
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import tzinfo
from enum import StrEnum

from ..core.ports import ErrorSink, OverdueTaskRepo
from .overdue import UTC, AdaptiveDelayPolicy
from .sweeper import ConsistencySweeper, SweepResult

logger = logging.getLogger(__name__)


class SchedulerPhase(StrEnum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


@dataclass(slots=True, frozen=True)
class SchedulerSnapshot:
    phase: SchedulerPhase
    wake_at: float | None
    next_due_at: float | None
    base_interval_s: float | None
    sweeps_run: int
    last_result: SweepResult | None
    last_error: str | None


def _log_sweep_error(exc: BaseException, source: str) -> None:
    logger.error("Overdue sweep failed source=%s", source, exc_info=exc)


class OverdueScheduler:
    """
    Owns the timers and the state machine: idle -> running -> scheduled(wake_at),
    where wake_at is whichever of the adaptive and fallback timers fires first.

    Locks:
    - _lock guards phase/timer handles (held briefly, never across store calls)
    - _sweep_lock serializes sweeps; the "still running?" check happens under it,
      so once stop() returns no timer can begin a new sweep
    - _rearm_lock makes cancel/compute/arm of the adaptive timer atomic
    """

    def __init__(
        self,
        store: OverdueTaskRepo,
        *,
        sweeper: ConsistencySweeper | None = None,
        policy: AdaptiveDelayPolicy | None = None,
        clock: Callable[[], float] = time.time,
        tz: tzinfo = UTC,
        on_error: ErrorSink | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._sweeper = sweeper or ConsistencySweeper(store, clock=clock, tz=tz)
        self._policy = policy or AdaptiveDelayPolicy()
        self._on_error: ErrorSink = on_error or _log_sweep_error

        self._lock = threading.Lock()
        self._sweep_lock = threading.Lock()
        self._rearm_lock = threading.Lock()

        self._phase = SchedulerPhase.IDLE
        self._generation = 0
        self._adaptive_wake: float | None = None
        self._fallback_wake: float | None = None
        self._next_due_at: float | None = None
        self._base_interval_s: float | None = None

        self._adaptive_timer: threading.Timer | None = None
        self._fallback_thread: threading.Thread | None = None
        self._fallback_stop: threading.Event | None = None

        self._sweeps_in_flight = 0
        self._sweeps_run = 0
        self._last_result: SweepResult | None = None
        self._last_error: str | None = None

    # ---- public API ----

    @property
    def phase(self) -> SchedulerPhase:
        with self._lock:
            return self._phase

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            return SchedulerSnapshot(
                phase=self._phase,
                wake_at=self._next_wake(),
                next_due_at=self._next_due_at,
                base_interval_s=self._base_interval_s,
                sweeps_run=self._sweeps_run,
                last_result=self._last_result,
                last_error=self._last_error,
            )

    def start(self, base_interval_minutes: float = 30) -> Callable[[], None]:
        """
        Run the initial sweep, arm the adaptive timer and start the fallback thread.

        Returns stop. Raises RuntimeError if already started.
        """
        base_s = float(base_interval_minutes) * 60.0
        if base_s <= 0:
            raise ValueError("base_interval_minutes must be positive")

        with self._lock:
            if self._phase is not SchedulerPhase.IDLE:
                raise RuntimeError("OverdueScheduler is already running")
            self._generation += 1
            gen = self._generation
            self._phase = SchedulerPhase.RUNNING
            self._base_interval_s = base_s
            stop_event = threading.Event()
            self._fallback_stop = stop_event

        logger.info("Starting overdue scheduler with %s minute base interval", base_interval_minutes)

        self._timer_sweep("initial", gen)
        self._rearm(gen)

        first_deadline = time.monotonic() + base_s
        thread = threading.Thread(
            target=self._fallback_loop,
            args=(gen, stop_event, base_s, first_deadline),
            name="overdue-fallback",
            daemon=True,
        )
        with self._lock:
            if self._is_live(gen):
                self._fallback_wake = self._clock() + base_s
                self._fallback_thread = thread
                thread.start()

        logger.info("Overdue scheduler started with adaptive intervals")
        return self.stop

    def stop(self) -> None:
        """Cancel both timers and go idle. Safe to call repeatedly; start() may follow."""
        with self._lock:
            if self._phase is SchedulerPhase.IDLE:
                return
            self._phase = SchedulerPhase.IDLE
            self._adaptive_wake = None
            self._fallback_wake = None
            timer, self._adaptive_timer = self._adaptive_timer, None
            stop_event, self._fallback_stop = self._fallback_stop, None
            self._fallback_thread = None

        if timer is not None:
            timer.cancel()
        if stop_event is not None:
            stop_event.set()
        logger.info("Overdue scheduler stopped, all timers cleared")

    def trigger_immediate_check(self, user_id: str | None = None) -> SweepResult:
        """
        Sweep now (optionally one user's tasks), then re-arm the adaptive timer.

        Blocks until the sweep is done so the caller sees up-to-date statuses.
        Store errors propagate. The fallback timer is left alone.
        """
        logger.info("Triggering immediate overdue check scope=%s", user_id or "all")

        with self._sweep_lock:
            with self._lock:
                gen = self._generation
                self._begin_sweep()
            try:
                result = self._sweeper.sweep(user_id)
            except Exception as exc:
                self._record(error=exc)
                with self._lock:
                    # The adaptive timer armed before this call is still pending.
                    if self._is_live(gen):
                        self._phase = SchedulerPhase.SCHEDULED
                raise
            self._record(result=result)

        self._rearm(gen)
        return result

    # ---- internals ----

    def _is_live(self, gen: int) -> bool:
        # Caller holds _lock.
        return self._generation == gen and self._phase is not SchedulerPhase.IDLE

    def _next_wake(self) -> float | None:
        # Caller holds _lock. Whichever timer fires first.
        wakes = [w for w in (self._adaptive_wake, self._fallback_wake) if w is not None]
        return min(wakes) if wakes else None

    def _begin_sweep(self) -> None:
        # Caller holds _lock and _sweep_lock. Balanced by _record().
        self._sweeps_in_flight += 1
        if self._phase is not SchedulerPhase.IDLE:
            self._phase = SchedulerPhase.RUNNING

    def _record(self, *, result: SweepResult | None = None, error: BaseException | None = None) -> None:
        with self._lock:
            self._sweeps_in_flight -= 1
            self._sweeps_run += 1
            if error is not None:
                self._last_error = f"{type(error).__name__}: {error}"
            else:
                self._last_result = result
                self._last_error = None

    def _report(self, exc: BaseException, source: str) -> None:
        try:
            self._on_error(exc, source)
        except Exception:
            logger.exception("Overdue error sink raised while handling source=%s", source)

    def _timer_sweep(self, source: str, gen: int) -> bool:
        """Sweep on behalf of a timer. Returns False if the timer is stale and did nothing."""
        with self._sweep_lock:
            with self._lock:
                if not self._is_live(gen):
                    return False
                if source == "adaptive" and threading.current_thread() is not self._adaptive_timer:
                    logger.debug("Adaptive timer superseded by a newer one; skipping")
                    return False
                self._begin_sweep()

            try:
                result = self._sweeper.sweep()
            except Exception as exc:
                self._record(error=exc)
                self._report(exc, source)
            else:
                self._record(result=result)
        return True

    def _rearm(self, gen: int) -> None:
        with self._rearm_lock:
            with self._lock:
                if not self._is_live(gen):
                    return

            now = self._clock()
            try:
                nearest = self._store.find_nearest_upcoming_due(now_ts=now)
            except Exception as exc:
                self._report(exc, "rearm")
                nearest = None

            next_due = nearest.due_at if nearest is not None else None
            delay = self._policy.delay_for(next_due, now)

            with self._lock:
                if not self._is_live(gen):
                    return
                if self._adaptive_timer is not None:
                    self._adaptive_timer.cancel()
                timer = threading.Timer(delay, self._on_adaptive_timer, args=(gen,))
                timer.name = "overdue-adaptive"
                timer.daemon = True
                self._adaptive_timer = timer
                # A sweep that started after ours keeps the scheduler running; its own rearm follows.
                self._phase = SchedulerPhase.RUNNING if self._sweeps_in_flight else SchedulerPhase.SCHEDULED
                self._adaptive_wake = now + delay
                self._next_due_at = next_due
                timer.start()

        if next_due is not None:
            hours = round((next_due - now) / 3600.0, 1)
            logger.info("Next task due in %s hours, scheduling check in %s minutes", hours, round(delay / 60.0, 2))
        else:
            logger.debug("No upcoming due dates, scheduling check in %s minutes", round(delay / 60.0, 2))

    def _on_adaptive_timer(self, gen: int) -> None:
        if self._timer_sweep("adaptive", gen):
            self._rearm(gen)

    def _fallback_loop(self, gen: int, stop_event: threading.Event, interval_s: float, deadline: float) -> None:
        # Fixed cadence on the monotonic clock: sweep time does not push later ticks back.
        while not stop_event.wait(max(0.0, deadline - time.monotonic())):
            now = time.monotonic()
            deadline += interval_s
            if deadline <= now:
                # The last sweep overran whole periods; skip them instead of firing back to back.
                deadline += (math.floor((now - deadline) / interval_s) + 1) * interval_s
            with self._lock:
                if self._is_live(gen):
                    self._fallback_wake = self._clock() + (deadline - now)

            if not self._timer_sweep("fallback", gen):
                return
            self._rearm(gen)
