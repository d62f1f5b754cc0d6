# tests/test_task_scheduler.py

from __future__ import annotations

import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from duekeeper.tasks.overdue import AdaptiveDelayPolicy
from duekeeper.tasks.task_models import TaskStatus
from duekeeper.tasks.task_scheduler import OverdueScheduler, SchedulerPhase

from .fakes import ErrorLog, FakeOverdueRepo, make_task, wait_until

# Timers fire every 20ms regardless of due dates.
FAST = AdaptiveDelayPolicy(tiers=(), idle_delay=0.02)
# Adaptive timer effectively never fires during a test.
SLOW = AdaptiveDelayPolicy(tiers=(), idle_delay=3600.0)
# 30ms fallback interval.
FAST_FALLBACK_MIN = 0.0005


def _alive(name: str) -> int:
    return sum(1 for t in threading.enumerate() if t.name == name and t.is_alive())


def test_start_sweeps_then_schedules_adaptive_check() -> None:
    now = time.time()
    repo = FakeOverdueRepo([make_task(1, due_at=0.0), make_task(2, due_at=now + 1800)])
    scheduler = OverdueScheduler(repo)

    stop = scheduler.start()
    try:
        assert repo.tasks[1].status is TaskStatus.OVERDUE
        snap = scheduler.snapshot()
        assert snap.phase is SchedulerPhase.SCHEDULED
        assert snap.sweeps_run == 1
        assert snap.last_result is not None and snap.last_result.task_ids == (1,)
        assert snap.next_due_at == repo.tasks[2].due_at
        assert snap.base_interval_s == 30 * 60
        # Nearest due in 30 minutes -> check again in 5 minutes.
        assert snap.wake_at is not None
        assert 290 <= snap.wake_at - now <= 310
    finally:
        stop()

    snap = scheduler.snapshot()
    assert snap.phase is SchedulerPhase.IDLE
    assert snap.wake_at is None


def test_wake_at_is_the_earlier_of_adaptive_and_fallback() -> None:
    scheduler = OverdueScheduler(FakeOverdueRepo())

    now = time.time()
    scheduler.start(base_interval_minutes=30)
    try:
        snap = scheduler.snapshot()
        assert snap.base_interval_s == 30 * 60
        # No due dates: the adaptive timer is an hour out, so the fallback fires first.
        assert snap.wake_at is not None
        assert snap.base_interval_s - 5 <= snap.wake_at - now <= snap.base_interval_s + 5
    finally:
        scheduler.stop()


def test_fallback_keeps_a_fixed_cadence_when_sweeps_are_slow() -> None:
    repo = FakeOverdueRepo()
    repo.sweep_delay = 0.06
    scheduler = OverdueScheduler(repo, policy=SLOW)

    scheduler.start(base_interval_minutes=0.1 / 60)
    try:
        assert wait_until(lambda: repo.sweep_calls >= 6)
    finally:
        scheduler.stop()

    ticks = list(repo.sweep_times)[1:6]  # skip the initial sweep
    mean_gap = (ticks[-1] - ticks[0]) / (len(ticks) - 1)
    # Waiting a full interval after each 60ms sweep would space ticks >= 160ms apart.
    assert mean_gap < 0.14


def test_start_twice_raises() -> None:
    scheduler = OverdueScheduler(FakeOverdueRepo(), policy=SLOW)
    scheduler.start()
    try:
        with pytest.raises(RuntimeError):
            scheduler.start()
    finally:
        scheduler.stop()


def test_start_rejects_non_positive_interval() -> None:
    scheduler = OverdueScheduler(FakeOverdueRepo())
    with pytest.raises(ValueError):
        scheduler.start(0)
    assert scheduler.phase is SchedulerPhase.IDLE


def test_adaptive_timer_keeps_rescheduling() -> None:
    repo = FakeOverdueRepo()
    scheduler = OverdueScheduler(repo, policy=FAST)
    scheduler.start(base_interval_minutes=60)
    try:
        assert wait_until(lambda: repo.sweep_calls >= 4)
        assert repo.nearest_calls >= 4
    finally:
        scheduler.stop()


def test_fallback_interval_sweeps_and_rearms() -> None:
    repo = FakeOverdueRepo()
    scheduler = OverdueScheduler(repo, policy=SLOW)
    scheduler.start(base_interval_minutes=FAST_FALLBACK_MIN)
    try:
        assert wait_until(lambda: repo.sweep_calls >= 3)
        # Every fallback sweep is followed by an adaptive rearm.
        assert wait_until(lambda: repo.nearest_calls >= 3)
        assert scheduler.phase in (SchedulerPhase.SCHEDULED, SchedulerPhase.RUNNING)
    finally:
        scheduler.stop()


def test_timer_sweep_errors_are_reported_and_loop_continues() -> None:
    repo = FakeOverdueRepo([make_task(1, due_at=0.0)])
    repo.fail_sweeps = 2
    errors = ErrorLog()
    scheduler = OverdueScheduler(repo, policy=FAST, on_error=errors)

    scheduler.start(base_interval_minutes=60)
    try:
        assert wait_until(lambda: repo.tasks[1].status is TaskStatus.OVERDUE)
        assert errors.sources[:2] == ["initial", "adaptive"]
        assert all(isinstance(exc, sqlite3.OperationalError) for exc, _ in errors.errors)
        assert wait_until(lambda: scheduler.snapshot().last_error is None)
    finally:
        scheduler.stop()


def test_failing_error_sink_does_not_kill_the_loop() -> None:
    def broken_sink(exc: BaseException, source: str) -> None:
        raise RuntimeError("sink is down")

    repo = FakeOverdueRepo()
    repo.fail_sweeps = 1
    scheduler = OverdueScheduler(repo, policy=FAST, on_error=broken_sink)
    scheduler.start(base_interval_minutes=60)
    try:
        assert wait_until(lambda: repo.sweep_calls >= 3)
    finally:
        scheduler.stop()


def test_rearm_failure_still_arms_a_timer() -> None:
    repo = FakeOverdueRepo()
    repo.fail_nearest = True
    errors = ErrorLog()
    policy = AdaptiveDelayPolicy(idle_delay=1200.0)
    scheduler = OverdueScheduler(repo, policy=policy, on_error=errors)

    now = time.time()
    scheduler.start()
    try:
        snap = scheduler.snapshot()
        assert "rearm" in errors.sources
        assert snap.phase is SchedulerPhase.SCHEDULED
        assert snap.wake_at is not None and 1190 <= snap.wake_at - now <= 1210
        assert _alive("overdue-adaptive") >= 1
    finally:
        scheduler.stop()


def test_trigger_while_idle_sweeps_without_arming() -> None:
    repo = FakeOverdueRepo([make_task(1, due_at=0.0)])
    scheduler = OverdueScheduler(repo)

    result = scheduler.trigger_immediate_check()

    assert result.modified_count == 1
    assert result.task_ids == (1,)
    assert scheduler.phase is SchedulerPhase.IDLE
    assert repo.nearest_calls == 0


def test_trigger_rearms_for_new_due_date_and_keeps_fallback() -> None:
    repo = FakeOverdueRepo()
    scheduler = OverdueScheduler(repo)
    # Fallback further out than the idle adaptive delay, so wake_at follows the adaptive timer.
    scheduler.start(base_interval_minutes=120)
    try:
        now = time.time()
        first = scheduler.snapshot()
        assert first.wake_at is not None and first.wake_at - now > 3000

        due = now + 3 * 3600
        repo.tasks[7] = make_task(7, due_at=due)
        result = scheduler.trigger_immediate_check()

        snap = scheduler.snapshot()
        assert result.modified_count == 0
        assert snap.phase is SchedulerPhase.SCHEDULED
        assert snap.next_due_at == due
        # 3 hours away -> 15 minute check.
        assert snap.wake_at is not None and 890 <= snap.wake_at - now <= 910
        assert _alive("overdue-fallback") >= 1
    finally:
        scheduler.stop()


def test_trigger_scoped_to_one_user() -> None:
    repo = FakeOverdueRepo([make_task(1, due_at=0.0, user_id="u1"), make_task(2, due_at=0.0, user_id="u2")])
    scheduler = OverdueScheduler(repo)

    result = scheduler.trigger_immediate_check("u2")

    assert result.task_ids == (2,)
    assert repo.tasks[1].status is TaskStatus.ACTIVE
    assert repo.tasks[2].status is TaskStatus.OVERDUE


def test_trigger_propagates_store_errors() -> None:
    repo = FakeOverdueRepo()
    errors = ErrorLog()
    scheduler = OverdueScheduler(repo, policy=SLOW, on_error=errors)
    scheduler.start()
    try:
        repo.fail_sweeps = 1
        with pytest.raises(sqlite3.OperationalError):
            scheduler.trigger_immediate_check()

        snap = scheduler.snapshot()
        assert snap.phase is SchedulerPhase.SCHEDULED
        assert snap.last_error is not None and "database is locked" in snap.last_error
        # Caller-facing errors are not also pushed to the sink.
        assert errors.errors == []
    finally:
        scheduler.stop()


def test_rearm_does_not_hide_a_sweep_that_started_after_it() -> None:
    repo = FakeOverdueRepo()
    scheduler = OverdueScheduler(repo, policy=SLOW)
    scheduler.start(base_interval_minutes=60)
    try:
        # First trigger finishes its sweep, then stalls inside the rearm.
        repo.block_nearest = threading.Event()
        repo.nearest_entered.clear()
        first = threading.Thread(target=scheduler.trigger_immediate_check)
        first.start()
        assert repo.nearest_entered.wait(timeout=2.0)

        # Second trigger takes the sweep lock and stalls mid-sweep.
        gate = threading.Event()
        repo.entered.clear()
        repo.block = gate
        second = threading.Thread(target=scheduler.trigger_immediate_check)
        second.start()
        assert repo.entered.wait(timeout=2.0)

        repo.block_nearest.set()
        first.join(timeout=2.0)
        assert scheduler.phase is SchedulerPhase.RUNNING

        gate.set()
        second.join(timeout=2.0)
        assert scheduler.phase is SchedulerPhase.SCHEDULED
    finally:
        scheduler.stop()


def test_only_one_adaptive_timer_outstanding() -> None:
    repo = FakeOverdueRepo()
    scheduler = OverdueScheduler(repo, policy=SLOW)
    scheduler.start()
    try:
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda _: scheduler.trigger_immediate_check(), range(12)))
        assert wait_until(lambda: _alive("overdue-adaptive") == 1)
    finally:
        scheduler.stop()
    assert wait_until(lambda: _alive("overdue-adaptive") == 0)


def test_concurrent_triggers_count_each_task_once() -> None:
    repo = FakeOverdueRepo([make_task(i, due_at=float(i)) for i in range(1, 11)])
    scheduler = OverdueScheduler(repo, policy=FAST)
    barrier = threading.Barrier(3)

    def run():
        barrier.wait()
        return scheduler.trigger_immediate_check()

    with ThreadPoolExecutor(max_workers=3) as pool:
        results = list(pool.map(lambda _: run(), range(3)))

    assert sum(r.modified_count for r in results) == 10
    assert all(t.status is TaskStatus.OVERDUE for t in repo.tasks.values())
    assert scheduler.trigger_immediate_check().modified_count == 0


def test_stop_during_inflight_sweep_prevents_further_sweeps() -> None:
    repo = FakeOverdueRepo([make_task(1, due_at=0.0)])
    scheduler = OverdueScheduler(repo, policy=FAST)
    scheduler.start(base_interval_minutes=FAST_FALLBACK_MIN)

    gate = threading.Event()
    repo.entered.clear()
    repo.block = gate
    assert repo.entered.wait(timeout=2.0), "a timer-driven sweep should be in flight"

    scheduler.stop()
    calls_at_stop = repo.sweep_calls
    assert scheduler.phase is SchedulerPhase.IDLE

    gate.set()
    time.sleep(0.2)

    assert repo.sweep_calls == calls_at_stop
    assert wait_until(lambda: _alive("overdue-fallback") == 0)


def test_restart_after_stop() -> None:
    repo = FakeOverdueRepo()
    scheduler = OverdueScheduler(repo, policy=FAST)

    stop = scheduler.start(base_interval_minutes=60)
    stop()
    stop()  # idempotent
    calls = repo.sweep_calls

    scheduler.start(base_interval_minutes=60)
    try:
        assert wait_until(lambda: repo.sweep_calls >= calls + 3)
        assert scheduler.phase in (SchedulerPhase.SCHEDULED, SchedulerPhase.RUNNING)
    finally:
        scheduler.stop()
