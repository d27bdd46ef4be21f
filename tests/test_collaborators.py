from __future__ import annotations

from optimistic_overlay.collaborators import InvalidationTarget, coerce_target, coerce_targets


def test_target_mappings_are_unwrapped():
    assert coerce_target({"key": ("bookings", "1"), "exact": False}) == InvalidationTarget(("bookings", "1"), exact=False)
    assert coerce_target({"queryKey": ("bookings",)}) == InvalidationTarget(("bookings",))
    assert coerce_target({"query_key": ("bookings",), "exact": None}) == InvalidationTarget(("bookings",))


def test_opaque_mapping_descriptor_is_kept_verbatim():
    descriptor = {"key": "bookings", "scope": "provider", "page": 2}

    target = coerce_target(descriptor)

    assert target.key == descriptor
    assert target.exact is True


def test_coerce_targets_drops_empties_and_duplicates_in_order():
    targets = coerce_targets([("a",), None, {"key": None}, ("b",), ("a",)])

    assert [target.key for target in targets] == [("a",), ("b",)]
