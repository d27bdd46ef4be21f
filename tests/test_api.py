from __future__ import annotations

import logging

import pytest

from optimistic_overlay import api
from optimistic_overlay.settings import EngineSettings


@pytest.fixture(autouse=True)
def no_registered_engine(monkeypatch):
    api.unregister_engine()
    monkeypatch.setattr(api, "_engine_warn_at", float("-inf"))
    monkeypatch.setattr(api, "_engine_warn_suppressed", 0)
    try:
        yield
    finally:
        engine = api.unregister_engine()
        if engine is not None:
            engine.stop()


def test_calls_without_engine_are_neutral():
    record = {"status": "confirmed"}

    assert api.set_overlay("booking", "b1", {"status": "pending"}) is False
    assert api.complete_overlay("booking", "b1") is False
    assert api.clear_overlay("booking", "b1") is False
    assert api.enqueue_reconciliation({"id": "booking:b1", "targets": ["x"]}) is False
    assert api.remove_reconciliation("booking:b1") is False
    assert api.set_suppression(True) is False
    assert api.is_suppressed() is False
    assert api.resolve("booking", "b1", record) is record


def test_missing_engine_warning_is_throttled(caplog):
    with caplog.at_level(logging.WARNING, logger="optimistic_overlay.api"):
        api.set_overlay("booking", "b1")
        api.set_overlay("booking", "b2")
        api.clear_overlay("booking", "b3")

    warnings = [record for record in caplog.records if record.name == "optimistic_overlay.api"]
    assert len(warnings) == 1
    assert "set_overlay" in warnings[0].getMessage()
    assert api._engine_warn_suppressed == 2


def test_build_engine_registers_and_delegates(cache, clock, fake_timers):
    engine = api.build_engine(cache, settings=EngineSettings(), clock=clock)

    assert api.get_engine() is engine
    assert api.set_overlay(
        "booking",
        "b1",
        {"status": "cancelled"},
        operation="cancel",
        targets=[("bookings", "b1")],
    )
    assert api.resolve("booking", "b1", {"status": "confirmed", "title": "Lunch"}) == {
        "status": "cancelled",
        "title": "Lunch",
    }
    assert api.remove_reconciliation("booking:b1") is True
    assert api.enqueue_reconciliation({"id": "booking:b1", "targets": [("bookings", "b1")]}) is True
    assert api.complete_overlay("booking", "b1") is True
    assert api.clear_overlay("booking", "b1") is True
    assert "booking:b1" not in engine.queue

    assert api.set_suppression(True, 2.0) is True
    assert api.is_suppressed() is True


def test_build_engine_without_registration(cache, clock, fake_timers):
    engine = api.build_engine(cache, settings=EngineSettings(), clock=clock, register=False)

    assert api.get_engine() is None
    assert api.unregister_engine() is None
    engine.stop()
