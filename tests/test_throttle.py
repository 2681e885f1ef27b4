# tests/test_throttle.py
"""
Minimum interval between automatic reconcile passes.
"""

import threading

from apps.reconcile.throttle import Throttle
from conftest import FakeClock


def test_first_call_runs():
    throttle = Throttle(60, clock=FakeClock())
    assert throttle.try_acquire() is True
    assert throttle.last_run == 1000.0


def test_calls_inside_interval_are_refused():
    clock = FakeClock()
    throttle = Throttle(60, clock=clock)
    assert throttle.try_acquire() is True

    clock.advance(59)
    assert throttle.try_acquire() is False
    assert throttle.remaining() == 1

    clock.advance(1)
    assert throttle.try_acquire() is True


def test_refused_call_does_not_move_window():
    clock = FakeClock()
    throttle = Throttle(10, clock=clock)
    throttle.try_acquire()
    clock.advance(5)
    throttle.try_acquire()
    assert throttle.last_run == 1000.0


def test_reset_allows_immediate_run():
    throttle = Throttle(60, clock=FakeClock())
    throttle.try_acquire()
    throttle.reset()
    assert throttle.remaining() == 0.0
    assert throttle.try_acquire() is True


def test_only_one_concurrent_caller_wins():
    throttle = Throttle(60, clock=FakeClock())
    barrier = threading.Barrier(10)
    results = []

    def worker():
        barrier.wait()
        results.append(throttle.try_acquire())

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1


def test_mark_starts_a_window():
    clock = FakeClock()
    throttle = Throttle(60, clock=clock)
    throttle.mark()
    assert throttle.try_acquire() is False
    assert throttle.last_run_at is not None

    clock.advance(60)
    assert throttle.try_acquire() is True
