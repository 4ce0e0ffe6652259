"""Tests for the event bus and the activity recorder."""

from __future__ import annotations

from dockyard.events.bus import EventBus, activity_recorder
from dockyard.events.types import EventType
from dockyard.storage.sqlite_store import SQLiteStore


async def test_emit_to_specific_and_global_listeners():
    bus = EventBus()
    seen: list[tuple[str, str]] = []

    async def specific(event_type, data):
        seen.append(("specific", data["project_id"]))

    async def everything(event_type, data):
        seen.append(("all", event_type.value))

    bus.on(EventType.PROJECT_CREATED, specific)
    bus.on_all(everything)
    await bus.emit(EventType.PROJECT_CREATED, {"project_id": "demo"})
    await bus.emit(EventType.PROJECT_DELETED, {"project_id": "demo"})

    assert seen == [
        ("specific", "demo"),
        ("all", "project.created"),
        ("all", "project.deleted"),
    ]


async def test_failing_listener_does_not_break_emit():
    bus = EventBus()
    calls: list[str] = []

    async def broken(event_type, data):
        raise RuntimeError("boom")

    async def healthy(event_type, data):
        calls.append(event_type.value)

    bus.on(EventType.BUILD_COMPLETED, broken)
    bus.on(EventType.BUILD_COMPLETED, healthy)
    await bus.emit(EventType.BUILD_COMPLETED)
    assert calls == ["build.completed"]


async def test_off_and_clear():
    bus = EventBus()
    calls: list[str] = []

    async def listener(event_type, data):
        calls.append(event_type.value)

    bus.on(EventType.PUSH_RECEIVED, listener)
    bus.off(EventType.PUSH_RECEIVED, listener)
    bus.on_all(listener)
    bus.clear()
    await bus.emit(EventType.PUSH_RECEIVED)
    assert calls == []


async def test_activity_recorder_writes_log(store: SQLiteStore):
    bus = EventBus()
    bus.on_all(activity_recorder(store))
    await bus.emit(
        EventType.BUILD_DISPATCHED,
        {"project_id": "demo", "actor": "alice@example.com", "description": "attempt 1"},
    )
    await bus.emit(EventType.BUILD_DISPATCHED, {"project_id": "demo"})

    entries = await store.get_activity_log(project_id="demo")
    assert len(entries) == 2
    assert {e["event_type"] for e in entries} == {"build.dispatched"}
    assert "alice@example.com" in {e["actor"] for e in entries}
