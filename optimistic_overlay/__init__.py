"""Optimistic state overlay and reconciliation engine."""
from __future__ import annotations

from .collaborators import (
    AuthoritativeCache,
    ExpectedValue,
    InvalidateOptions,
    InvalidationTarget,
)
from .engine import OptimisticStateEngine
from .event_listener import ChangeNotification, EventListener, ListenerReport
from .garbage_collector import GarbageCollector, SweepReport
from .listing import ListingState
from .overlay_store import OptimisticOverlayStore, OverlayEntry, resolve_effective_state
from .reconciliation_queue import (
    DrainReport,
    ReconciliationEntry,
    ReconciliationQueue,
    ReconciliationScheduleError,
)
from .settings import EngineSettings, load_engine_settings
from .suppression import SuppressionCoordinator
from .version import __version__

__all__ = [
    "AuthoritativeCache",
    "ChangeNotification",
    "DrainReport",
    "EngineSettings",
    "EventListener",
    "ExpectedValue",
    "GarbageCollector",
    "InvalidateOptions",
    "InvalidationTarget",
    "ListenerReport",
    "ListingState",
    "OptimisticOverlayStore",
    "OptimisticStateEngine",
    "OverlayEntry",
    "ReconciliationEntry",
    "ReconciliationQueue",
    "ReconciliationScheduleError",
    "SuppressionCoordinator",
    "SweepReport",
    "__version__",
    "load_engine_settings",
    "resolve_effective_state",
]
