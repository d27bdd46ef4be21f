"""Consumes change notifications and invalidates the authoritative cache."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from .collaborators import (
    SEVERITY_INFO,
    SEVERITY_SUCCESS,
    SEVERITY_WARNING,
    AuthoritativeCache,
    NotificationSink,
    coerce_targets,
    invalidate_target,
    notify,
)
from .overlay_store import normalise_key
from .suppression import SuppressionCoordinator

LOGGER = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW = 3.0
REMOVAL_KINDS = frozenset({"removed", "deleted", "canceled", "cancelled", "denied"})

TargetMapping = Callable[[str, str], Iterable[Any]]
MessageFormatter = Callable[["ChangeNotification"], Optional[str]]
ActorResolver = Callable[[], Optional[str]]


@dataclass(frozen=True)
class ChangeNotification:
    kind: str
    identity: str
    category: Optional[str] = None
    actor: Optional[str] = None
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> Tuple[str, str]:
        return (self.kind, self.identity)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Optional["ChangeNotification"]:
        kind = str(raw.get("kind") or raw.get("event") or "").strip().lower()
        identity = raw.get("identity", raw.get("id", raw.get("key")))
        if not kind or identity is None:
            return None
        category = raw.get("category")
        actor = raw.get("actor")
        payload = raw.get("payload")
        return cls(
            kind=kind,
            identity=normalise_key(identity),
            category=str(category) if category else None,
            actor=str(actor) if actor else None,
            payload=dict(payload) if isinstance(payload, Mapping) else {},
        )


@dataclass
class ListenerReport:
    processed: int = 0
    duplicates: int = 0
    suppressed: int = 0
    invalidations: int = 0


def _coerce_notification(raw: Any) -> Optional[ChangeNotification]:
    if isinstance(raw, ChangeNotification):
        if isinstance(raw.identity, str):
            return raw
        return ChangeNotification(raw.kind, normalise_key(raw.identity), raw.category, raw.actor, raw.payload)
    if isinstance(raw, Mapping):
        return ChangeNotification.from_mapping(raw)
    return None


def default_message(notification: ChangeNotification) -> str:
    label = (notification.category or "entity").replace("_", " ").replace("-", " ")
    return f"{label.capitalize()} {notification.kind}: {notification.identity}"


class EventListener:
    """Deduplicating, suppression-aware bridge from change events to cache invalidation.

    The listener only touches the authoritative cache. Overlay entries belong
    to whoever created them, since only that caller knows whether a given event
    confirms its own speculative action.
    """

    def __init__(
        self,
        cache: AuthoritativeCache,
        mapping: TargetMapping,
        suppression: SuppressionCoordinator,
        *,
        notifier: Optional[NotificationSink] = None,
        current_actor: Optional[ActorResolver] = None,
        message_formatter: Optional[MessageFormatter] = None,
        dedup_window: float = DEFAULT_DEDUP_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._mapping = mapping
        self._suppression = suppression
        self._notifier = notifier
        self._current_actor = current_actor
        self._message_formatter = message_formatter or default_message
        self._dedup_window = max(0.0, float(dedup_window))
        self._clock = clock
        self._lock = threading.Lock()
        self._recent: Dict[Tuple[str, str], float] = {}

    @property
    def dedup_window(self) -> float:
        return self._dedup_window

    def handle(self, notification: Any, *, now: Optional[float] = None) -> ListenerReport:
        return self.handle_batch([notification], now=now)

    def handle_batch(self, notifications: Iterable[Any], *, now: Optional[float] = None) -> ListenerReport:
        timestamp = self._clock() if now is None else float(now)
        report = ListenerReport()
        batch: Dict[Tuple[str, str], ChangeNotification] = {}
        for raw in notifications or ():
            notification = _coerce_notification(raw)
            if notification is None:
                LOGGER.debug("Ignoring malformed change notification: %r", raw)
                continue
            if notification.dedup_key in batch:
                report.duplicates += 1
                continue
            batch[notification.dedup_key] = notification

        for notification in batch.values():
            if self._seen_recently(notification.dedup_key, timestamp):
                report.duplicates += 1
                LOGGER.debug("Dropping duplicate %s event for %s", notification.kind, notification.identity)
                continue
            if self._suppression.is_suppressed(now):
                report.suppressed += 1
                LOGGER.debug(
                    "Skipping %s event for %s - manual update in progress",
                    notification.kind,
                    notification.identity,
                )
                continue
            report.invalidations += self._apply(notification)
            report.processed += 1
            with self._lock:
                self._recent[notification.dedup_key] = timestamp
            self._notify(notification)
        return report

    def _seen_recently(self, key: Tuple[str, str], timestamp: float) -> bool:
        with self._lock:
            cutoff = timestamp - self._dedup_window
            for stale in [item for item, seen_at in self._recent.items() if seen_at <= cutoff]:
                del self._recent[stale]
            seen_at = self._recent.get(key)
        return seen_at is not None and timestamp - seen_at < self._dedup_window

    def _apply(self, notification: ChangeNotification) -> int:
        try:
            targets = coerce_targets(self._mapping(notification.kind, notification.identity))
        except Exception as exc:
            LOGGER.warning(
                "Invalidation mapping failed for %s event on %s: %s",
                notification.kind,
                notification.identity,
                exc,
            )
            return 0
        count = 0
        for target in targets:
            if invalidate_target(self._cache, target):
                count += 1
        LOGGER.debug(
            "Processed %s event for %s (%d invalidations)",
            notification.kind,
            notification.identity,
            count,
        )
        return count

    def _affects_current_actor(self, notification: ChangeNotification) -> bool:
        if self._current_actor is None or not notification.actor:
            return False
        try:
            actor = self._current_actor()
        except Exception:
            LOGGER.debug("Current actor resolver raised", exc_info=True)
            return False
        if not actor:
            return False
        return str(actor).strip().lower() == notification.actor.strip().lower()

    def _notify(self, notification: ChangeNotification) -> None:
        if self._notifier is None:
            return
        try:
            message = self._message_formatter(notification)
        except Exception:
            LOGGER.debug("Message formatter raised for %r", notification, exc_info=True)
            return
        if not message:
            return
        if self._affects_current_actor(notification):
            severity = SEVERITY_WARNING if notification.kind in REMOVAL_KINDS else SEVERITY_SUCCESS
        else:
            severity = SEVERITY_INFO
        notify(self._notifier, severity, message)

