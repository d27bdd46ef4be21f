"""Fixed-interval timers for the drain and garbage-collection loops."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


class IntervalTimer:
    """Runs ``function`` every ``interval`` seconds on a daemon ``threading.Timer`` chain.

    Each tick re-arms the next one after the callback returns, so a slow tick
    never overlaps the following one. Exceptions are logged and the loop keeps
    going.
    """

    def __init__(
        self,
        interval: float,
        function: Callable[[], object],
        *,
        name: str = "interval",
        run_immediately: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = float(interval)
        self._function = function
        self._name = name
        self._run_immediately = run_immediately
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._running = False

    @property
    def interval(self) -> float:
        return self._interval

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        if self._run_immediately:
            self._run_once()
        self._arm()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            timer = self._timer
            self._timer = None
        if timer is not None:
            try:
                timer.cancel()
            except Exception:
                pass

    def _arm(self) -> None:
        with self._lock:
            if not self._running:
                return
            timer = threading.Timer(self._interval, self._tick)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _tick(self) -> None:
        if not self.is_running():
            return
        self._run_once()
        self._arm()

    def _run_once(self) -> None:
        try:
            self._function()
        except Exception:
            LOGGER.exception("%s tick failed", self._name)
