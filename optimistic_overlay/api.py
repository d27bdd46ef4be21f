"""Module-scoped access to the process-wide optimistic state engine.

Application code registers one engine at startup and then calls the free
functions below from any read or write path without threading the engine
object through every layer.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from .collaborators import AuthoritativeCache, ExpectedValue, NotificationSink
from .engine import OptimisticStateEngine
from .event_listener import ActorResolver, MessageFormatter, TargetMapping
from .logging_utils import configure_logger
from .reconciliation_queue import ReconciliationEntry
from .settings import EngineSettings, load_engine_settings

_LOGGER = logging.getLogger(__name__)

_engine: Optional[OptimisticStateEngine] = None
_engine_warn_at: float = 0.0
_engine_warn_suppressed: int = 0
_ENGINE_WARN_INTERVAL = 30.0  # seconds


def register_engine(engine: OptimisticStateEngine) -> None:
    global _engine
    _engine = engine


def unregister_engine() -> Optional[OptimisticStateEngine]:
    """Forget the registered engine and return it so the caller can stop it."""

    global _engine
    engine, _engine = _engine, None
    return engine


def get_engine() -> Optional[OptimisticStateEngine]:
    return _engine


def build_engine(
    cache: AuthoritativeCache,
    *,
    settings: Optional[EngineSettings] = None,
    mapping: Optional[TargetMapping] = None,
    notifier: Optional[NotificationSink] = None,
    current_actor: Optional[ActorResolver] = None,
    message_formatter: Optional[MessageFormatter] = None,
    clock: Callable[[], float] = time.time,
    register: bool = True,
    start: bool = False,
) -> OptimisticStateEngine:
    """Create an engine from settings (loaded from file/environment when omitted)."""

    configure_logger()
    engine = OptimisticStateEngine(
        cache,
        settings=settings or load_engine_settings(),
        mapping=mapping,
        notifier=notifier,
        current_actor=current_actor,
        message_formatter=message_formatter,
        clock=clock,
    )
    if register:
        register_engine(engine)
    if start:
        engine.start()
    return engine


def _require_engine(operation: str) -> Optional[OptimisticStateEngine]:
    engine = _engine
    if engine is not None:
        return engine
    # Callers may touch the API before startup finishes; avoid log spam.
    global _engine_warn_at, _engine_warn_suppressed
    now = time.monotonic()
    if now - _engine_warn_at >= _ENGINE_WARN_INTERVAL:
        suppressed = _engine_warn_suppressed
        _engine_warn_at = now
        _engine_warn_suppressed = 0
        if suppressed:
            _LOGGER.warning(
                "Optimistic state engine unavailable for %s [%d more calls suppressed]",
                operation,
                suppressed,
            )
        else:
            _LOGGER.warning("Optimistic state engine unavailable for %s", operation)
    else:
        _engine_warn_suppressed += 1
    return None


def set_overlay(
    category: str,
    key: Any,
    fields: Optional[Mapping[str, Any]] = None,
    *,
    is_pending: bool = True,
    operation: Optional[str] = None,
    targets: Iterable[Any] = (),
    expected: Union[ExpectedValue, Mapping[str, Any], None] = None,
) -> bool:
    engine = _require_engine("set_overlay")
    if engine is None:
        return False
    engine.set_overlay(
        category,
        key,
        fields,
        is_pending=is_pending,
        operation=operation,
        targets=targets,
        expected=expected,
    )
    return True


def complete_overlay(category: str, key: Any) -> bool:
    engine = _require_engine("complete_overlay")
    if engine is None:
        return False
    return engine.complete_overlay(category, key) is not None


def clear_overlay(category: str, key: Any) -> bool:
    engine = _require_engine("clear_overlay")
    if engine is None:
        return False
    return engine.clear_overlay(category, key)


def resolve(category: str, key: Any, authoritative_record: Any = None) -> Any:
    """Effective state for a read path; the record passes through untouched without an engine."""

    engine = _engine
    if engine is None:
        return authoritative_record
    return engine.resolve(category, key, authoritative_record)


def enqueue_reconciliation(entry: Union[ReconciliationEntry, Mapping[str, Any]]) -> bool:
    engine = _require_engine("enqueue_reconciliation")
    if engine is None:
        return False
    return engine.enqueue_reconciliation(entry)


def remove_reconciliation(entry_id: str) -> bool:
    engine = _require_engine("remove_reconciliation")
    if engine is None:
        return False
    return engine.remove_reconciliation(entry_id)


def set_suppression(active: bool, duration: Optional[float] = None) -> bool:
    engine = _require_engine("set_suppression")
    if engine is None:
        return False
    engine.set_suppression(active, duration)
    return True


def is_suppressed() -> bool:
    engine = _engine
    return engine.is_suppressed() if engine is not None else False
