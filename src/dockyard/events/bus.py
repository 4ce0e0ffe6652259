"""Async event bus for Dockyard."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

from dockyard.events.types import EventType
from dockyard.models.project import utc_now

if TYPE_CHECKING:
    from dockyard.storage.base import StorageBackend

logger = logging.getLogger(__name__)

Listener = Callable[[EventType, dict[str, Any]], Coroutine[Any, Any, None]]


class EventBus:
    """Simple async pub/sub event bus."""

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)
        self._global_listeners: list[Listener] = []

    def on(self, event_type: EventType, listener: Listener) -> None:
        """Register a listener for a specific event type."""
        self._listeners[event_type].append(listener)

    def on_all(self, listener: Listener) -> None:
        """Register a listener for all events."""
        self._global_listeners.append(listener)

    def off(self, event_type: EventType, listener: Listener) -> None:
        """Remove a listener."""
        if listener in self._listeners[event_type]:
            self._listeners[event_type].remove(listener)

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        """Emit an event to all registered listeners."""
        data = data or {}
        listeners = self._listeners.get(event_type, []) + self._global_listeners

        for listener in listeners:
            try:
                await listener(event_type, data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in event listener for %s", event_type)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
        self._global_listeners.clear()


def activity_recorder(store: StorageBackend) -> Listener:
    """Build a listener that writes every event into the store's activity log."""

    async def _record(event_type: EventType, data: dict[str, Any]) -> None:
        await store.log_activity(
            {
                "id": uuid.uuid4().hex,
                "project_id": data.get("project_id"),
                "event_type": event_type.value,
                "actor": data.get("actor"),
                "description": data.get("description"),
                "created_at": utc_now(),
            }
        )

    return _record
