"""Optimistic listed/unlisted toggles built on the generic overlay engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional

from .collaborators import ExpectedValue
from .overlay_store import OverlayEntry

if TYPE_CHECKING:
    from .engine import OptimisticStateEngine

LISTING_CATEGORY = "listing"
LISTED_FIELD = "isListed"


@dataclass(frozen=True)
class ListingState:
    is_listed: bool
    is_pending: bool = False
    operation: Optional[str] = None


def set_listing_state(
    engine: "OptimisticStateEngine",
    key: Any,
    is_listed: bool,
    *,
    listed_lookup: Any,
    is_pending: bool = True,
    extra_targets: Iterable[Any] = (),
) -> OverlayEntry:
    """Show ``key`` as listed/unlisted right away and verify it against ``listed_lookup`` later."""

    listed = bool(is_listed)
    return engine.set_overlay(
        LISTING_CATEGORY,
        key,
        {LISTED_FIELD: listed},
        is_pending=is_pending,
        operation="listing" if listed else "unlisting",
        targets=[listed_lookup, *extra_targets],
        expected=ExpectedValue(lookup=listed_lookup, field=LISTED_FIELD, value=listed),
    )


def complete_listing_state(engine: "OptimisticStateEngine", key: Any) -> Optional[OverlayEntry]:
    return engine.complete_overlay(LISTING_CATEGORY, key)


def clear_listing_state(engine: "OptimisticStateEngine", key: Any) -> bool:
    return engine.clear_overlay(LISTING_CATEGORY, key)


def effective_listing_state(engine: "OptimisticStateEngine", key: Any, server_is_listed: Any) -> ListingState:
    entry = engine.get_overlay(LISTING_CATEGORY, key)
    if entry is None or LISTED_FIELD not in entry.fields:
        return ListingState(is_listed=bool(server_is_listed))
    return ListingState(
        is_listed=bool(entry.fields[LISTED_FIELD]),
        is_pending=entry.is_pending,
        operation=entry.operation,
    )
