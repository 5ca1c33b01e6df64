from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from taskplan.events import (
    EVENT_KINDS,
    EVENT_TYPES,
    EventBus,
    JsonlEventSink,
    PlanCompleted,
    PlanCreated,
    PlanEvent,
    StepCompleted,
)


def test_event_kinds_are_unique() -> None:
    assert len(EVENT_KINDS) == len(EVENT_TYPES)


def test_event_to_dict_carries_payload() -> None:
    event = PlanCreated("p1", "ship it", 3)
    data = event.to_dict()
    assert data["type"] == "plan.created"
    assert data["plan_id"] == "p1"
    assert data["payload"] == {"goal": "ship it", "step_count": 3}
    assert "timestamp" in data


def test_emit_calls_listeners_in_registration_order() -> None:
    bus = EventBus()
    seen: list[str] = []
    bus.add_listener(lambda e: seen.append(f"first:{e.kind}"))
    bus.add_listener(lambda e: seen.append(f"second:{e.kind}"))

    bus.emit(StepCompleted("p1", "s1"))

    assert seen == ["first:step.completed", "second:step.completed"]


def test_add_and_remove_are_idempotent() -> None:
    bus = EventBus()
    seen: list[PlanEvent] = []
    listener = seen.append

    bus.add_listener(listener)
    bus.add_listener(listener)
    assert len(bus) == 1

    bus.remove_listener(listener)
    bus.remove_listener(listener)
    bus.emit(PlanCreated("p1", "g", 1))
    assert seen == []


def test_listener_may_unregister_itself_during_dispatch() -> None:
    bus = EventBus()
    seen: list[str] = []

    def once(event: PlanEvent) -> None:
        seen.append("once")
        bus.remove_listener(once)

    bus.add_listener(once)
    bus.add_listener(lambda e: seen.append("always"))
    bus.emit(PlanCreated("p1", "g", 1))
    bus.emit(PlanCreated("p1", "g", 1))

    assert seen == ["once", "always", "always"]


def test_failing_listener_is_logged_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(event: PlanEvent) -> None:
        raise RuntimeError("listener bug")

    bus.add_listener(broken)
    bus.add_listener(lambda e: seen.append(e.kind))

    with caplog.at_level(logging.ERROR, logger="taskplan.events"):
        bus.emit(PlanCreated("p1", "g", 1))

    assert seen == ["plan.created"]
    assert "listener bug" in caplog.text


def test_jsonl_sink_appends_versioned_envelopes(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    sink = JsonlEventSink(path)

    sink(PlanCreated("p1", "g", 2))
    sink(PlanCompleted("p1", success=True, steps_completed=2, duration_ms=15))

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["v"] == 1
    assert first["type"] == "plan.created"
    assert first["plan_id"] == "p1"
    assert isinstance(first["ts_ms"], int)
    assert sink.read()[1]["payload"] == {
        "success": True,
        "steps_completed": 2,
        "duration_ms": 15,
    }


def test_jsonl_sink_read_of_missing_file(tmp_path: Path) -> None:
    assert JsonlEventSink(tmp_path / "none.jsonl").read() == []
