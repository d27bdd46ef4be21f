from __future__ import annotations

import pytest

from optimistic_overlay.event_listener import ChangeNotification, EventListener, default_message
from optimistic_overlay.suppression import SuppressionCoordinator


def _mapping(kind, identity):
    targets = [("bookings", identity), ("bookings", "list")]
    if kind == "deleted":
        targets.append(("stats",))
    return targets


@pytest.fixture
def suppression(clock, fake_timers):
    return SuppressionCoordinator(3.0, clock=clock)


@pytest.fixture
def notices():
    return []


@pytest.fixture
def listener(cache, suppression, clock, notices):
    return EventListener(
        cache,
        _mapping,
        suppression,
        notifier=lambda severity, message: notices.append((severity, message)),
        current_actor=lambda: "Alice",
        clock=clock,
    )


def test_notification_invalidates_mapped_targets(listener, cache):
    report = listener.handle(ChangeNotification("updated", "b42", category="booking"))

    assert report.processed == 1
    assert report.invalidations == 2
    assert cache.invalidated_keys == [("bookings", "b42"), ("bookings", "list")]


def test_duplicate_within_window_is_dropped(listener, cache, clock):
    listener.handle({"kind": "updated", "identity": "b42"}, now=clock.now)
    report = listener.handle({"kind": "updated", "identity": "b42"}, now=clock.now + 2.9)

    assert report.duplicates == 1
    assert report.processed == 0
    assert len(cache.invalidations) == 2


def test_same_event_after_window_is_processed_again(listener, cache, clock):
    listener.handle({"kind": "updated", "identity": "b42"}, now=clock.now)
    report = listener.handle({"kind": "updated", "identity": "b42"}, now=clock.now + 3.0)

    assert report.processed == 1
    assert len(cache.invalidations) == 4


def test_different_kind_for_same_identity_is_not_a_duplicate(listener):
    listener.handle({"kind": "updated", "identity": "b42"})
    report = listener.handle({"kind": "deleted", "identity": "b42"})

    assert report.processed == 1
    assert report.invalidations == 3


def test_batch_collapses_repeated_events(listener, cache):
    report = listener.handle_batch(
        [
            {"kind": "updated", "identity": "b1"},
            {"kind": "updated", "identity": "b1"},
            {"kind": "updated", "identity": 2},
            {"kind": "", "identity": "b3"},
            "garbage",
        ]
    )

    assert report.processed == 2
    assert report.duplicates == 1
    assert ("bookings", "2") in cache.invalidated_keys


def test_events_are_skipped_while_suppressed_and_not_remembered(listener, suppression, cache):
    suppression.set_suppression(True, 3.0)

    skipped = listener.handle({"kind": "updated", "identity": "b42"})
    assert skipped.suppressed == 1
    assert cache.invalidations == []

    suppression.set_suppression(False)
    processed = listener.handle({"kind": "updated", "identity": "b42"})
    assert processed.processed == 1


def test_mapping_failure_is_absorbed(cache, suppression, clock):
    def broken(kind, identity):
        raise KeyError(identity)

    listener = EventListener(cache, broken, suppression, clock=clock)

    report = listener.handle({"kind": "updated", "identity": "b42"})

    assert report.processed == 1
    assert report.invalidations == 0


def test_invalidation_failure_is_absorbed(listener, cache):
    cache.fail_invalidate = True

    report = listener.handle({"kind": "updated", "identity": "b42"})

    assert report.processed == 1
    assert report.invalidations == 0


def test_severity_reflects_current_actor(listener, notices):
    listener.handle(ChangeNotification("updated", "b1", category="booking", actor="alice"))
    listener.handle(ChangeNotification("cancelled", "b2", category="booking", actor="ALICE"))
    listener.handle(ChangeNotification("updated", "b3", category="booking", actor="bob"))
    listener.handle(ChangeNotification("updated", "b4"))

    assert notices == [
        ("success", "Booking updated: b1"),
        ("warning", "Booking cancelled: b2"),
        ("info", "Booking updated: b3"),
        ("info", "Entity updated: b4"),
    ]


def test_formatter_can_silence_notifications(cache, suppression, clock, notices):
    listener = EventListener(
        cache,
        _mapping,
        suppression,
        notifier=lambda severity, message: notices.append((severity, message)),
        message_formatter=lambda notification: None,
        clock=clock,
    )

    listener.handle({"kind": "updated", "identity": "b1"})

    assert notices == []


def test_notifier_failure_does_not_break_processing(cache, suppression, clock):
    def broken(severity, message):
        raise RuntimeError("toast queue full")

    listener = EventListener(cache, _mapping, suppression, notifier=broken, clock=clock)

    assert listener.handle({"kind": "updated", "identity": "b1"}).processed == 1


def test_from_mapping_normalises_fields():
    notification = ChangeNotification.from_mapping(
        {"event": "Updated", "id": 42, "category": "guest_list", "payload": {"seats": 2}}
    )

    assert notification.kind == "updated"
    assert notification.identity == "42"
    assert notification.payload == {"seats": 2}
    assert default_message(notification) == "Guest list updated: 42"
    assert ChangeNotification.from_mapping({"kind": "updated"}) is None


def test_same_event_invalidates_after_suppression_timer_fires(listener, suppression, cache, fake_timers):
    suppression.set_suppression(True, 3.0)
    assert listener.handle({"kind": "updated", "identity": "b42"}).suppressed == 1

    fake_timers[-1].fire()
    report = listener.handle({"kind": "updated", "identity": "b42"})

    assert report.processed == 1
    assert cache.invalidated_keys == [("bookings", "b42"), ("bookings", "list")]


def test_same_event_invalidates_once_suppression_window_lapses(listener, suppression, cache, clock):
    suppression.set_suppression(True, 3.0)
    assert listener.handle({"kind": "updated", "identity": "b42"}).suppressed == 1

    clock.advance(3.0)
    report = listener.handle({"kind": "updated", "identity": "b42"})

    assert report.processed == 1
    assert len(cache.invalidations) == 2
