from __future__ import annotations

from optimistic_overlay.suppression import SuppressionCoordinator


def test_suppression_clears_when_timer_fires(clock, fake_timers):
    coordinator = SuppressionCoordinator(3.0, clock=clock)

    coordinator.set_suppression(True)

    assert coordinator.is_suppressed() is True
    assert coordinator.expires_at == clock.now + 3.0
    assert len(fake_timers) == 1
    assert fake_timers[0].interval == 3.0
    assert fake_timers[0].daemon is True

    fake_timers[0].fire()

    assert coordinator.is_suppressed() is False
    assert coordinator.expires_at is None


def test_suppression_is_time_bounded_without_timer(clock, fake_timers):
    coordinator = SuppressionCoordinator(3.0, clock=clock)
    coordinator.set_suppression(True, 1.5)

    assert coordinator.is_suppressed(now=clock.now + 1.4) is True
    assert coordinator.is_suppressed(now=clock.now + 1.5) is False


def test_superseded_timer_does_not_clear_newer_window(clock, fake_timers):
    coordinator = SuppressionCoordinator(3.0, clock=clock)
    coordinator.set_suppression(True, 3.0)
    clock.advance(2.0)
    coordinator.set_suppression(True, 3.0)

    first, second = fake_timers
    assert first.cancelled is True

    first.fire()
    assert coordinator.is_suppressed() is True

    second.fire()
    assert coordinator.is_suppressed() is False


def test_explicit_clear_cancels_timer(clock, fake_timers):
    coordinator = SuppressionCoordinator(clock=clock)
    coordinator.set_suppression(True)

    coordinator.set_suppression(False)

    assert fake_timers[0].cancelled is True
    assert coordinator.is_suppressed() is False
