from __future__ import annotations

import logging
import threading

import pytest

from optimistic_overlay.logging_utils import LOGGER_NAME


class FakeCache:
    """Records invalidations and serves snapshots from a plain dict."""

    def __init__(self, snapshots=None):
        self.snapshots = dict(snapshots or {})
        self.invalidations = []
        self.fail_invalidate = False
        self.fail_snapshot = False

    def invalidate(self, target, options):
        if self.fail_invalidate:
            raise RuntimeError("cache offline")
        self.invalidations.append((target, options))

    def get_snapshot(self, target):
        if self.fail_snapshot:
            raise RuntimeError("cache offline")
        return self.snapshots.get(target)

    @property
    def invalidated_keys(self):
        return [target for target, _options in self.invalidations]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = float(now)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = tuple(args or ())
        self.kwargs = dict(kwargs or {})
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def is_alive(self) -> bool:
        return self.started and not self.cancelled

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function(*self.args, **self.kwargs)


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_timers(monkeypatch):
    timers = []

    def _factory(*args, **kwargs):
        timer = FakeTimer(*args, **kwargs)
        timers.append(timer)
        return timer

    monkeypatch.setattr(threading, "Timer", _factory)
    return timers


@pytest.fixture(autouse=True)
def restore_package_logger():
    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    try:
        yield
    finally:
        logger.handlers[:] = handlers
        logger.setLevel(level)
        logger.propagate = propagate
