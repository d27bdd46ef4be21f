"""Durable queue of "verify and, if still wrong, invalidate" tasks."""
from __future__ import annotations

import json
import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .collaborators import (
    AuthoritativeCache,
    ExpectedValue,
    InvalidationTarget,
    coerce_expected,
    coerce_targets,
    invalidate_target,
)
from .settings import DEFAULT_RECONCILIATION_SCHEDULE

LOGGER = logging.getLogger(__name__)

_QUEUE_VERSION = 1


class ReconciliationScheduleError(ValueError):
    """Raised when a backoff schedule is empty, negative or decreasing."""


def validate_schedule(schedule: Sequence[Any]) -> Tuple[float, ...]:
    offsets: List[float] = []
    for raw in schedule:
        try:
            offset = float(raw)
        except (TypeError, ValueError) as exc:
            raise ReconciliationScheduleError(f"Schedule offset {raw!r} is not a number") from exc
        if not math.isfinite(offset) or offset < 0.0:
            raise ReconciliationScheduleError(f"Schedule offset {raw!r} must be a finite, non-negative number")
        if offsets and offset < offsets[-1]:
            raise ReconciliationScheduleError("Schedule offsets must be non-decreasing")
        offsets.append(offset)
    if not offsets:
        raise ReconciliationScheduleError("Schedule must contain at least one attempt")
    return tuple(offsets)


@dataclass(frozen=True)
class ReconciliationEntry:
    id: str
    category: str = "generic"
    invalidation_targets: Tuple[InvalidationTarget, ...] = ()
    expected: Optional[ExpectedValue] = None
    attempt_index: int = 0
    created_at: float = 0.0
    next_attempt_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "invalidation_targets": [target.to_dict() for target in self.invalidation_targets],
            "expected": self.expected.to_dict() if self.expected is not None else None,
            "attempt_index": self.attempt_index,
            "created_at": self.created_at,
            "next_attempt_at": self.next_attempt_at,
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Optional["ReconciliationEntry"]:
        """Build an entry from a loose mapping; returns None when id or targets are missing."""

        entry_id = str(raw.get("id") or "").strip()
        targets_raw = raw.get("invalidation_targets", raw.get("targets", raw.get("queryKeys")))
        if not entry_id or not isinstance(targets_raw, (list, tuple)):
            return None
        targets = coerce_targets(targets_raw)
        if not targets:
            return None

        def _number(name: str, default: float) -> float:
            try:
                value = float(raw.get(name, default))
            except (TypeError, ValueError):
                return default
            return value if math.isfinite(value) else default

        created_at = _number("created_at", 0.0)
        try:
            attempt_index = max(0, int(raw.get("attempt_index", 0)))
        except (TypeError, ValueError):
            attempt_index = 0
        return cls(
            id=entry_id,
            category=str(raw.get("category") or "generic"),
            invalidation_targets=targets,
            expected=coerce_expected(raw.get("expected")),
            attempt_index=attempt_index,
            created_at=created_at,
            next_attempt_at=_number("next_attempt_at", created_at),
        )


@dataclass
class DrainReport:
    resolved: int = 0
    invalidated: int = 0
    exhausted: int = 0
    skipped: int = 0
    resolved_ids: List[str] = field(default_factory=list)
    exhausted_ids: List[str] = field(default_factory=list)


def _tupleize(value: Any) -> Any:
    # JSON turns tuple descriptors into lists; restore them so they compare equal again.
    if isinstance(value, list):
        return tuple(_tupleize(item) for item in value)
    if isinstance(value, dict):
        return {key: _tupleize(item) for key, item in value.items()}
    return value


def _restore_entry(raw: Any) -> Optional[ReconciliationEntry]:
    if not isinstance(raw, dict):
        return None
    targets = raw.get("invalidation_targets")
    if isinstance(targets, list):
        raw = dict(raw)
        raw["invalidation_targets"] = [
            {**item, "key": _tupleize(item.get("key"))} if isinstance(item, dict) else _tupleize(item)
            for item in targets
        ]
        expected = raw.get("expected")
        if isinstance(expected, dict):
            raw["expected"] = {**expected, "lookup": _tupleize(expected.get("lookup"))}
    return ReconciliationEntry.from_mapping(raw)


def load_reconciliation_queue(path: Path) -> List[ReconciliationEntry]:
    """Read a persisted queue, treating missing or malformed files as empty."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.debug("Failed to load reconciliation queue %s: %s", path, exc)
        return []
    if not isinstance(raw, dict) or not isinstance(raw.get("entries"), list):
        return []
    restored: List[ReconciliationEntry] = []
    for item in raw["entries"]:
        entry = _restore_entry(item)
        if entry is not None:
            restored.append(entry)
    return restored


class ReconciliationQueue:
    """Bounded-retry reconciliation entries, drained on a fixed interval.

    Each entry is attempted at ``created_at + schedule[attempt_index]``. The
    schedule is anchored to creation time so a process that wakes up late does
    not restart a fresh backoff window. An entry whose ``expected`` value is
    already visible in the authoritative snapshot is dropped without any
    invalidation.
    """

    def __init__(
        self,
        cache: AuthoritativeCache,
        schedule: Sequence[float] = DEFAULT_RECONCILIATION_SCHEDULE,
        *,
        clock: Callable[[], float] = time.time,
        path: Optional[Path] = None,
        debounce_seconds: float = 0.5,
    ) -> None:
        self._cache = cache
        self._schedule = validate_schedule(schedule)
        self._clock = clock
        self._path = Path(path) if path is not None else None
        self._debounce_seconds = max(0.05, float(debounce_seconds))
        self._lock = threading.RLock()
        self._flush_guard = threading.Lock()
        self._entries: Dict[str, ReconciliationEntry] = {}
        self._dirty = False
        self._flush_timer: Optional[threading.Timer] = None
        self._unpersistable: Set[str] = set()
        if self._path is not None:
            for entry in load_reconciliation_queue(self._path):
                self._entries[entry.id] = entry
            if self._entries:
                LOGGER.debug("Restored %d reconciliation entries from %s", len(self._entries), self._path)

    @property
    def schedule(self) -> Tuple[float, ...]:
        return self._schedule

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries

    def get(self, entry_id: str) -> Optional[ReconciliationEntry]:
        with self._lock:
            return self._entries.get(entry_id)

    def entries(self) -> List[ReconciliationEntry]:
        with self._lock:
            return list(self._entries.values())

    def enqueue(self, entry: Union[ReconciliationEntry, Mapping[str, Any]]) -> bool:
        """Insert or replace by id; the new entry starts over at attempt 0."""

        if isinstance(entry, Mapping):
            candidate = ReconciliationEntry.from_mapping(entry)
        elif isinstance(entry, ReconciliationEntry):
            candidate = replace(entry, invalidation_targets=coerce_targets(entry.invalidation_targets))
            if not candidate.id or not candidate.invalidation_targets:
                candidate = None
        else:
            candidate = None
        if candidate is None:
            LOGGER.debug("Skipping reconciliation entry without id or invalidation targets: %r", entry)
            return False
        now = self._clock()
        fresh = replace(candidate, attempt_index=0, created_at=now, next_attempt_at=now)
        with self._lock:
            self._entries.pop(fresh.id, None)
            self._entries[fresh.id] = fresh
            self._dirty = True
        LOGGER.debug(
            "Enqueued reconciliation %s (%d targets, expected=%s)",
            fresh.id,
            len(fresh.invalidation_targets),
            fresh.expected,
        )
        self._schedule_flush()
        return True

    def remove(self, entry_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(entry_id, None)
            if removed is not None:
                self._dirty = True
        if removed is None:
            return False
        LOGGER.debug("Removed reconciliation %s", entry_id)
        self._schedule_flush()
        return True

    def next_attempt_at(self, entry: ReconciliationEntry, attempt_index: int) -> float:
        return entry.created_at + self._schedule[attempt_index]

    def drain(self, now: Optional[float] = None) -> DrainReport:
        """Attempt every due entry once; never raises for collaborator failures."""

        current = self._clock() if now is None else float(now)
        with self._lock:
            pending = list(self._entries.values())
        due = [entry for entry in pending if current >= entry.next_attempt_at]
        report = DrainReport(skipped=len(pending) - len(due))
        changed = False
        for entry in due:
            resolved = self._attempt(entry)
            with self._lock:
                if self._entries.get(entry.id) is not entry:
                    # Replaced or removed while we were talking to the cache.
                    continue
                changed = True
                if resolved:
                    del self._entries[entry.id]
                    report.resolved += 1
                    report.resolved_ids.append(entry.id)
                    continue
                report.invalidated += 1
                next_index = entry.attempt_index + 1
                if next_index >= len(self._schedule):
                    del self._entries[entry.id]
                    report.exhausted += 1
                    report.exhausted_ids.append(entry.id)
                    continue
                self._entries[entry.id] = replace(
                    entry,
                    attempt_index=next_index,
                    next_attempt_at=self.next_attempt_at(entry, next_index),
                )
        if changed:
            with self._lock:
                self._dirty = True
            self._schedule_flush()
        if report.resolved or report.invalidated:
            LOGGER.debug(
                "Reconciliation drain: resolved=%d invalidated=%d exhausted=%d waiting=%d",
                report.resolved,
                report.invalidated,
                report.exhausted,
                report.skipped,
            )
        for entry_id in report.exhausted_ids:
            LOGGER.info("Reconciliation %s exhausted its retry schedule; trusting the authoritative cache", entry_id)
        return report

    def _attempt(self, entry: ReconciliationEntry) -> bool:
        expected = entry.expected
        if expected is not None:
            try:
                snapshot = self._cache.get_snapshot(expected.lookup)
            except Exception as exc:
                LOGGER.warning("Snapshot lookup for %s failed: %s; treating as mismatch", entry.id, exc)
            else:
                if expected.matches(snapshot):
                    LOGGER.debug("Reconciliation %s already converged on %s=%r", entry.id, expected.field, expected.value)
                    return True
        for target in entry.invalidation_targets:
            invalidate_target(self._cache, target)
        return False

    def expire(self, now: float, max_age: float) -> List[ReconciliationEntry]:
        expired: List[ReconciliationEntry] = []
        with self._lock:
            for entry_id, entry in list(self._entries.items()):
                if now - entry.created_at > max_age:
                    expired.append(entry)
                    del self._entries[entry_id]
            if expired:
                self._dirty = True
        if expired:
            self._schedule_flush()
        return expired

    # Persistence -----------------------------------------------------------

    def _schedule_flush(self) -> None:
        if self._path is None:
            return
        with self._lock:
            if self._flush_timer is not None and self._flush_timer.is_alive():
                return
            timer = threading.Timer(self._debounce_seconds, self._flush)
            timer.daemon = True
            self._flush_timer = timer
            timer.start()

    def _flush(self) -> None:
        if self._path is None:
            return
        with self._flush_guard:
            with self._lock:
                if not self._dirty:
                    self._flush_timer = None
                    return
                snapshot = {
                    "version": _QUEUE_VERSION,
                    "entries": self._serialisable_entries(),
                }
                self._dirty = False
                self._flush_timer = None
            success = self._write_snapshot(snapshot)
        if not success:
            with self._lock:
                self._dirty = True
            self._schedule_flush()

    def _serialisable_entries(self) -> List[Dict[str, Any]]:
        # Caller holds the lock. Entries with non-JSON descriptors stay in memory only.
        rows: List[Dict[str, Any]] = []
        for entry in self._entries.values():
            row = entry.to_dict()
            try:
                json.dumps(row, sort_keys=True)
            except (TypeError, ValueError) as exc:
                if entry.id not in self._unpersistable:
                    self._unpersistable.add(entry.id)
                    LOGGER.warning("Reconciliation %s cannot be persisted and will not survive a restart: %s", entry.id, exc)
                continue
            rows.append(row)
        return rows

    def flush_pending(self) -> None:
        """Force an immediate write of pending queue changes."""

        self._flush()

    def close(self) -> None:
        """Cancel the debounce timer and write any pending changes now."""

        with self._lock:
            timer = self._flush_timer
            self._flush_timer = None
        if timer is not None:
            try:
                timer.cancel()
            except Exception:
                pass
        self._flush()

    def _write_snapshot(self, snapshot: Mapping[str, Any]) -> bool:
        if self._path is None:
            return False
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(snapshot, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self._path)
            return True
        except OSError as exc:
            LOGGER.debug("Failed to write reconciliation queue %s: %s", self._path, exc)
            return False

