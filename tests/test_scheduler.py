from __future__ import annotations

import pytest

from optimistic_overlay.scheduler import IntervalTimer


def test_interval_timer_runs_immediately_and_rearms(fake_timers):
    calls = []
    timer = IntervalTimer(20.0, lambda: calls.append("tick"), name="drain", run_immediately=True)

    timer.start()

    assert calls == ["tick"]
    assert timer.is_running() is True
    assert [t.interval for t in fake_timers] == [20.0]

    fake_timers[-1].fire()

    assert calls == ["tick", "tick"]
    assert len(fake_timers) == 2


def test_interval_timer_survives_failing_callback(fake_timers, caplog):
    def boom():
        raise RuntimeError("drain failed")

    timer = IntervalTimer(5.0, boom, name="gc")
    timer.start()
    fake_timers[-1].fire()

    assert len(fake_timers) == 2
    assert "gc tick failed" in caplog.text


def test_stop_cancels_pending_tick(fake_timers):
    calls = []
    timer = IntervalTimer(5.0, lambda: calls.append("tick"))
    timer.start()
    pending = fake_timers[-1]

    timer.stop()
    pending.fire()

    assert pending.cancelled is True
    assert calls == []
    assert timer.is_running() is False


def test_start_is_idempotent(fake_timers):
    timer = IntervalTimer(5.0, lambda: None)
    timer.start()
    timer.start()

    assert len(fake_timers) == 1


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        IntervalTimer(0, lambda: None)
