"""Process-wide optimistic state engine wiring overlay, queue, listener and GC."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar, Union

from .collaborators import (
    AuthoritativeCache,
    ExpectedValue,
    NotificationSink,
    coerce_expected,
    coerce_targets,
    invalidate_target,
)
from .event_listener import (
    ActorResolver,
    EventListener,
    ListenerReport,
    MessageFormatter,
    TargetMapping,
)
from .garbage_collector import GarbageCollector, SweepReport
from .overlay_store import OptimisticOverlayStore, OverlayEntry, reconciliation_id
from .reconciliation_queue import DrainReport, ReconciliationEntry, ReconciliationQueue
from .scheduler import IntervalTimer
from .settings import EngineSettings, clamp_queue_max_age
from .suppression import SuppressionCoordinator

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _no_targets(_kind: str, _identity: str) -> Iterable[Any]:
    return ()


class OptimisticStateEngine:
    """Owns the overlay store, reconciliation queue, suppression flag and listener.

    Only the operations below mutate shared state; the underlying maps are never
    handed out for direct mutation.
    """

    def __init__(
        self,
        cache: AuthoritativeCache,
        *,
        settings: Optional[EngineSettings] = None,
        mapping: Optional[TargetMapping] = None,
        notifier: Optional[NotificationSink] = None,
        current_actor: Optional[ActorResolver] = None,
        message_formatter: Optional[MessageFormatter] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = clamp_queue_max_age(settings or EngineSettings())
        self._cache = cache
        self._clock = clock
        self.queue = ReconciliationQueue(
            cache,
            self.settings.reconciliation_schedule,
            clock=clock,
            path=self.settings.queue_path,
            debounce_seconds=self.settings.persist_debounce,
        )
        self.store = OptimisticOverlayStore(self.queue, clock=clock)
        self.suppression = SuppressionCoordinator(self.settings.suppression_seconds, clock=clock)
        self.listener = EventListener(
            cache,
            mapping or _no_targets,
            self.suppression,
            notifier=notifier,
            current_actor=current_actor,
            message_formatter=message_formatter,
            dedup_window=self.settings.dedup_window,
            clock=clock,
        )
        self.collector = GarbageCollector(
            self.store,
            self.queue,
            pending_ttl=self.settings.pending_ttl,
            settled_ttl=self.settings.settled_ttl,
            queue_max_age=self.settings.queue_max_age,
            clock=clock,
        )
        self._drain_timer = IntervalTimer(
            self.settings.drain_interval,
            self.drain,
            name="reconciliation drain",
            run_immediately=True,
        )
        self._gc_timer = IntervalTimer(self.settings.gc_interval, self.sweep, name="overlay gc")

    # Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        LOGGER.info(
            "Starting optimistic state engine (drain every %.1fs, gc every %.1fs, %d queued)",
            self.settings.drain_interval,
            self.settings.gc_interval,
            len(self.queue),
        )
        self._drain_timer.start()
        self._gc_timer.start()

    def stop(self) -> None:
        self._drain_timer.stop()
        self._gc_timer.stop()
        self.suppression.set_suppression(False)
        self.queue.close()
        LOGGER.info("Optimistic state engine stopped")

    @property
    def running(self) -> bool:
        return self._drain_timer.is_running() or self._gc_timer.is_running()

    def __enter__(self) -> "OptimisticStateEngine":
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.stop()

    # Overlay ---------------------------------------------------------------

    def set_overlay(
        self,
        category: str,
        key: Any,
        fields: Optional[Mapping[str, Any]] = None,
        *,
        is_pending: bool = True,
        operation: Optional[str] = None,
        targets: Iterable[Any] = (),
        expected: Union[ExpectedValue, Mapping[str, Any], None] = None,
    ) -> OverlayEntry:
        """Write the overlay first, then its safety-net reconciliation entry when pending.

        A write that does not enqueue drops any reconciliation left by the
        entry it replaces, since that entry's ``expected`` no longer applies.
        """

        entry = self.store.set_overlay(category, key, fields, is_pending=is_pending, operation=operation)
        resolved_targets = coerce_targets(targets)
        entry_id = reconciliation_id(category, entry.key)
        if entry.is_pending and resolved_targets:
            self.queue.enqueue(
                ReconciliationEntry(
                    id=entry_id,
                    category=category,
                    invalidation_targets=resolved_targets,
                    expected=coerce_expected(expected),
                )
            )
        else:
            self.queue.remove(entry_id)
        return entry

    def complete_overlay(self, category: str, key: Any) -> Optional[OverlayEntry]:
        return self.store.complete_overlay(category, key)

    def clear_overlay(self, category: str, key: Any) -> bool:
        return self.store.clear_overlay(category, key)

    def get_overlay(self, category: str, key: Any) -> Optional[OverlayEntry]:
        return self.store.get_overlay(category, key)

    def resolve(self, category: str, key: Any, authoritative_record: Any = None) -> Any:
        return self.store.resolve(category, key, authoritative_record)

    # Reconciliation --------------------------------------------------------

    def enqueue_reconciliation(self, entry: Union[ReconciliationEntry, Mapping[str, Any]]) -> bool:
        return self.queue.enqueue(entry)

    def remove_reconciliation(self, entry_id: str) -> bool:
        return self.queue.remove(entry_id)

    def drain(self, now: Optional[float] = None) -> DrainReport:
        return self.queue.drain(now)

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        return self.collector.sweep(now)

    # Events ----------------------------------------------------------------

    def set_suppression(self, active: bool, duration: Optional[float] = None) -> None:
        self.suppression.set_suppression(active, duration)

    def is_suppressed(self, now: Optional[float] = None) -> bool:
        return self.suppression.is_suppressed(now)

    def handle_notifications(self, notifications: Iterable[Any], *, now: Optional[float] = None) -> ListenerReport:
        return self.listener.handle_batch(notifications, now=now)

    def coordinated_update(
        self,
        update_fn: Callable[[], T],
        targets: Iterable[Any] = (),
        *,
        settle_seconds: Optional[float] = None,
    ) -> Optional[T]:
        """Run a manual, known-good refresh while automatic event refreshes stand down.

        Suppression holds for the whole call, capped at ``update_guard_seconds``
        so a hung update still lets events through eventually. Returns ``None``
        without calling ``update_fn`` when another manual update already holds
        the suppression window.
        """

        if self.suppression.is_suppressed():
            LOGGER.warning("Manual update already in progress, skipping")
            return None
        settle = self.settings.settle_seconds if settle_seconds is None else max(0.0, float(settle_seconds))
        self.suppression.set_suppression(True, self.settings.update_guard_seconds)
        try:
            result = update_fn()
            for target in coerce_targets(targets):
                invalidate_target(self._cache, target)
            return result
        except Exception:
            LOGGER.error("Manual update failed", exc_info=True)
            raise
        finally:
            # Let events that raced the manual refresh settle before re-enabling them.
            self.suppression.set_suppression(True, settle)
