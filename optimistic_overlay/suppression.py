"""Self-expiring hint that tells the automatic event path to stand down."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_SUPPRESSION_SECONDS = 3.0


class SuppressionCoordinator:
    """Process-wide suppression flag with an automatic clear timer.

    It never blocks a caller; the event listener only consults it to decide
    whether to skip automatic invalidations while a manual refresh is in flight.
    """

    def __init__(
        self,
        default_duration: float = DEFAULT_SUPPRESSION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._default_duration = max(0.05, float(default_duration))
        self._clock = clock
        self._lock = threading.Lock()
        self._active = False
        self._expires_at: Optional[float] = None
        self._clear_timer: Optional[threading.Timer] = None
        self._generation = 0

    @property
    def expires_at(self) -> Optional[float]:
        return self._expires_at

    def set_suppression(self, active: bool, duration: Optional[float] = None) -> None:
        timer: Optional[threading.Timer]
        with self._lock:
            timer = self._clear_timer
            self._clear_timer = None
            self._generation += 1
            if not active:
                self._active = False
                self._expires_at = None
            else:
                seconds = self._default_duration if duration is None else max(0.0, float(duration))
                self._active = True
                self._expires_at = self._clock() + seconds
                new_timer = threading.Timer(seconds, self._auto_clear, args=(self._generation,))
                new_timer.daemon = True
                self._clear_timer = new_timer
        if timer is not None:
            try:
                timer.cancel()
            except Exception:
                pass
        if active:
            LOGGER.debug("Event suppression raised until %.3f", self._expires_at or 0.0)
            new_timer.start()
        else:
            LOGGER.debug("Event suppression cleared")

    def is_suppressed(self, now: Optional[float] = None) -> bool:
        with self._lock:
            if not self._active:
                return False
            current = self._clock() if now is None else float(now)
            return self._expires_at is None or current < self._expires_at

    def _auto_clear(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                # Superseded by a newer window; its own timer clears it.
                return
            self._active = False
            self._expires_at = None
            self._clear_timer = None
        LOGGER.debug("Event suppression expired")
