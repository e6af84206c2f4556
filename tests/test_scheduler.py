from __future__ import annotations

import pytest

from novelscript.scheduler import Scheduler


def test_timers_fire_in_due_order_with_ties_by_scheduling_order() -> None:
    scheduler = Scheduler()
    fired: list[str] = []

    scheduler.call_later(200, lambda: fired.append("late"))
    scheduler.call_later(100, lambda: fired.append("first"))
    scheduler.call_later(100, lambda: fired.append("second"))

    assert scheduler.advance(150) == 2
    assert fired == ["first", "second"]
    assert scheduler.now == 150

    scheduler.advance(50)
    assert fired == ["first", "second", "late"]


def test_callbacks_may_schedule_timers_inside_the_same_window() -> None:
    scheduler = Scheduler()
    fired: list[float] = []

    def tick() -> None:
        fired.append(scheduler.now)
        if len(fired) < 3:
            scheduler.call_later(100, tick)

    scheduler.call_later(100, tick)
    scheduler.advance(1000)

    assert fired == [100, 200, 300]
    assert scheduler.pending == 0


def test_cancelled_timers_never_fire() -> None:
    scheduler = Scheduler()
    fired: list[str] = []

    handle = scheduler.call_later(10, lambda: fired.append("cancelled"))
    scheduler.call_later(20, lambda: fired.append("kept"))
    scheduler.cancel(handle)

    assert scheduler.pending == 1
    assert scheduler.next_due() == 20
    scheduler.advance(100)
    assert fired == ["kept"]
    assert not handle.active


def test_cancel_all_clears_the_queue() -> None:
    scheduler = Scheduler()
    handles = [scheduler.call_later(delay, lambda: None) for delay in (5, 10)]

    scheduler.cancel_all()

    assert scheduler.pending == 0
    assert scheduler.next_due() is None
    assert all(handle.cancelled for handle in handles)


def test_zero_delay_timers_fire_on_next_advance() -> None:
    scheduler = Scheduler()
    fired: list[bool] = []

    scheduler.call_later(0, lambda: fired.append(True))
    assert fired == []

    scheduler.advance(0)
    assert fired == [True]


def test_run_until_idle_jumps_the_clock() -> None:
    scheduler = Scheduler()
    fired: list[float] = []
    scheduler.call_later(5000, lambda: fired.append(scheduler.now))

    assert scheduler.run_until_idle() == 1
    assert fired == [5000]
    assert scheduler.now == 5000


def test_negative_advance_is_rejected() -> None:
    with pytest.raises(ValueError):
        Scheduler().advance(-1)
