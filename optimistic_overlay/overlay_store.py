"""Speculative per-entity state shown in place of the authoritative record."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from .reconciliation_queue import ReconciliationQueue

LOGGER = logging.getLogger(__name__)

_PENDING_FIELD_NAMES = ("isPending", "is_pending")
_OPERATION_FIELD_NAMES = ("operation",)


def normalise_key(key: Any) -> str:
    """Integer-like and string identities address the same entry."""

    if isinstance(key, bytes):
        return key.decode("utf-8", "replace")
    return str(key)


def reconciliation_id(category: str, key: Any) -> str:
    return f"{category}:{normalise_key(key)}"


@dataclass(frozen=True)
class OverlayEntry:
    category: str
    key: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    is_pending: bool = True
    operation: Optional[str] = None
    timestamp: float = 0.0

    def age(self, now: float) -> float:
        return now - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "key": self.key,
            "fields": dict(self.fields),
            "is_pending": self.is_pending,
            "operation": self.operation,
            "timestamp": self.timestamp,
        }


def resolve_effective_state(entry: Optional[OverlayEntry], authoritative: Any) -> Any:
    """Merge overlay fields over the authoritative record; overlay wins while present."""

    if entry is None:
        return authoritative
    merged: Dict[str, Any] = dict(authoritative) if isinstance(authoritative, Mapping) else {}
    merged.update(entry.fields)
    return merged


def _split_partial_state(
    partial_state: Optional[Mapping[str, Any]],
    is_pending: bool,
    operation: Optional[str],
) -> Tuple[Dict[str, Any], bool, Optional[str]]:
    fields = dict(partial_state or {})
    for name in _PENDING_FIELD_NAMES:
        if name in fields:
            is_pending = bool(fields.pop(name))
    for name in _OPERATION_FIELD_NAMES:
        if name in fields:
            raw = fields.pop(name)
            operation = None if raw is None else str(raw)
    return fields, is_pending, operation


class OptimisticOverlayStore:
    """Holds at most one overlay entry per ``(category, key)``.

    Writes are full replacements. The store never merges two speculative writes;
    merging only happens against the authoritative record in :meth:`resolve`.
    """

    def __init__(
        self,
        reconciliation: Optional["ReconciliationQueue"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._reconciliation = reconciliation
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: Dict[Tuple[str, str], OverlayEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def set_overlay(
        self,
        category: str,
        key: Any,
        partial_state: Optional[Mapping[str, Any]] = None,
        *,
        is_pending: bool = True,
        operation: Optional[str] = None,
    ) -> OverlayEntry:
        fields, pending, op = _split_partial_state(partial_state, is_pending, operation)
        entry = OverlayEntry(
            category=category,
            key=normalise_key(key),
            fields=MappingProxyType(fields),
            is_pending=pending,
            operation=op,
            timestamp=self._clock(),
        )
        with self._lock:
            self._entries[(entry.category, entry.key)] = entry
        LOGGER.debug(
            "Set %s overlay %s/%s (operation=%s): %s",
            "pending" if pending else "settled",
            category,
            entry.key,
            op,
            fields,
        )
        return entry

    def complete_overlay(self, category: str, key: Any) -> Optional[OverlayEntry]:
        slot = (category, normalise_key(key))
        with self._lock:
            current = self._entries.get(slot)
            if current is None:
                return None
            updated = replace(current, is_pending=False, timestamp=self._clock())
            self._entries[slot] = updated
        LOGGER.debug("Completed overlay %s/%s", category, slot[1])
        return updated

    def clear_overlay(self, category: str, key: Any) -> bool:
        slot = (category, normalise_key(key))
        with self._lock:
            removed = self._entries.pop(slot, None)
        if self._reconciliation is not None:
            self._reconciliation.remove(reconciliation_id(category, slot[1]))
        if removed is not None:
            LOGGER.debug("Cleared overlay %s/%s", category, slot[1])
        return removed is not None

    def get_overlay(self, category: str, key: Any) -> Optional[OverlayEntry]:
        with self._lock:
            return self._entries.get((category, normalise_key(key)))

    def resolve(self, category: str, key: Any, authoritative_record: Any = None) -> Any:
        entry = self.get_overlay(category, key)
        if entry is None:
            return authoritative_record
        return resolve_effective_state(entry, authoritative_record)

    def entries(self, category: Optional[str] = None) -> List[OverlayEntry]:
        with self._lock:
            values = list(self._entries.values())
        if category is None:
            return values
        return [entry for entry in values if entry.category == category]

    def expire(self, now: float, pending_ttl: float, settled_ttl: float) -> List[OverlayEntry]:
        """Drop entries past their TTL; pending entries use the shorter ceiling."""

        expired: List[OverlayEntry] = []
        with self._lock:
            for slot, entry in list(self._entries.items()):
                ttl = pending_ttl if entry.is_pending else settled_ttl
                if entry.age(now) > ttl:
                    expired.append(entry)
                    del self._entries[slot]
        return expired
