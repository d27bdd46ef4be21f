"""Boundary types shared with the authoritative cache and notification sinks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Tuple

LOGGER = logging.getLogger(__name__)

NotificationSink = Callable[[str, str], None]

SEVERITY_SUCCESS = "success"
SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"


@dataclass(frozen=True)
class InvalidateOptions:
    exact: bool = True
    refetch_active: bool = True


@dataclass(frozen=True)
class InvalidationTarget:
    """Opaque lookup descriptor handed back verbatim to the authoritative cache."""

    key: Any
    exact: bool = True

    def to_dict(self) -> dict:
        return {"key": self.key, "exact": self.exact}


@dataclass(frozen=True)
class ExpectedValue:
    """Assertion that ``get_snapshot(lookup)[field] == value`` once truth catches up."""

    lookup: Any
    field: str
    value: Any

    def to_dict(self) -> dict:
        return {"lookup": self.lookup, "field": self.field, "value": self.value}

    def matches(self, snapshot: Any) -> bool:
        if snapshot is None:
            return False
        if isinstance(snapshot, Mapping):
            if self.field not in snapshot:
                return False
            return snapshot[self.field] == self.value
        sentinel = object()
        current = getattr(snapshot, self.field, sentinel)
        return current is not sentinel and current == self.value


class AuthoritativeCache(Protocol):
    def invalidate(self, target: Any, options: InvalidateOptions) -> Any:
        ...

    def get_snapshot(self, target: Any) -> Any:
        ...


_TARGET_KEY_FIELDS = frozenset({"key", "query_key", "queryKey"})
_TARGET_FIELDS = _TARGET_KEY_FIELDS | {"exact"}


def _is_target_mapping(raw: Mapping[str, Any]) -> bool:
    # Any other field means the mapping is itself an opaque descriptor.
    names = set(raw.keys())
    return bool(names & _TARGET_KEY_FIELDS) and names <= _TARGET_FIELDS


def coerce_target(raw: Any) -> Optional[InvalidationTarget]:
    """Accept targets, ``{"key"|"query_key": ..., "exact": ...}`` mappings or bare descriptors."""

    if raw is None:
        return None
    if isinstance(raw, InvalidationTarget):
        return raw
    if isinstance(raw, Mapping) and _is_target_mapping(raw):
        key = raw.get("key", raw.get("query_key", raw.get("queryKey")))
        if key is None:
            return None
        exact = raw.get("exact", True)
        return InvalidationTarget(key=key, exact=True if exact is None else bool(exact))
    return InvalidationTarget(key=raw)


def coerce_targets(raw: Iterable[Any]) -> Tuple[InvalidationTarget, ...]:
    """Coerce to targets, dropping empties and duplicates while keeping order."""

    seen: list[InvalidationTarget] = []
    for item in raw or ():
        target = coerce_target(item)
        if target is None or target in seen:
            continue
        seen.append(target)
    return tuple(seen)


def coerce_expected(raw: Any) -> Optional[ExpectedValue]:
    if raw is None or isinstance(raw, ExpectedValue):
        return raw
    if not isinstance(raw, Mapping):
        return None
    lookup = raw.get("lookup", raw.get("query_key", raw.get("queryKey")))
    field = raw.get("field")
    if lookup is None or not field:
        return None
    return ExpectedValue(lookup=lookup, field=str(field), value=raw.get("value"))


def invalidate_target(cache: AuthoritativeCache, target: InvalidationTarget, *, refetch_active: bool = True) -> bool:
    """Invalidate one target, logging and absorbing collaborator failures."""

    try:
        cache.invalidate(target.key, InvalidateOptions(exact=target.exact, refetch_active=refetch_active))
    except Exception as exc:
        LOGGER.warning("Invalidation failed for %r: %s", target.key, exc)
        return False
    return True


def notify(sink: Optional[NotificationSink], severity: str, message: str) -> None:
    if sink is None:
        return
    try:
        sink(severity, message)
    except Exception:
        LOGGER.debug("Notification sink raised while handling %r", message, exc_info=True)
