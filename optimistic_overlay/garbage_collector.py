"""Periodic expiry of overlay and reconciliation entries."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .overlay_store import OptimisticOverlayStore, OverlayEntry
from .reconciliation_queue import ReconciliationEntry, ReconciliationQueue

LOGGER = logging.getLogger(__name__)

DEFAULT_PENDING_TTL = 2 * 60.0
DEFAULT_SETTLED_TTL = 15 * 60.0


@dataclass
class SweepReport:
    overlays: List[OverlayEntry] = field(default_factory=list)
    reconciliations: List[ReconciliationEntry] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return len(self.overlays) + len(self.reconciliations)


class GarbageCollector:
    """Expires stale speculative state regardless of confirmations.

    A pending entry that outlives ``pending_ttl`` means its confirmation was
    lost. Settled entries are kept for the longer ``settled_ttl`` so a slow
    authoritative refresh does not flicker back to the pre-action state.
    """

    def __init__(
        self,
        store: OptimisticOverlayStore,
        queue: Optional[ReconciliationQueue] = None,
        *,
        pending_ttl: float = DEFAULT_PENDING_TTL,
        settled_ttl: float = DEFAULT_SETTLED_TTL,
        queue_max_age: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if pending_ttl <= 0 or settled_ttl <= 0:
            raise ValueError("Overlay TTLs must be positive")
        self._store = store
        self._queue = queue
        self._pending_ttl = float(pending_ttl)
        self._settled_ttl = float(settled_ttl)
        self._queue_max_age = float(queue_max_age) if queue_max_age is not None else self._settled_ttl
        self._clock = clock

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        current = self._clock() if now is None else float(now)
        report = SweepReport()
        report.overlays = self._store.expire(current, self._pending_ttl, self._settled_ttl)
        for entry in report.overlays:
            LOGGER.debug(
                "Auto-cleaning %s overlay %s/%s (age %.1fs)",
                "pending" if entry.is_pending else "completed",
                entry.category,
                entry.key,
                entry.age(current),
            )
        if self._queue is not None:
            report.reconciliations = self._queue.expire(current, self._queue_max_age)
            for entry in report.reconciliations:
                LOGGER.debug("Auto-cleaning reconciliation %s", entry.id)
        return report
