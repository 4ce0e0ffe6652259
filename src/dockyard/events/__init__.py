"""Dockyard event system."""

from dockyard.events.bus import EventBus, activity_recorder
from dockyard.events.types import EventType

__all__ = ["EventBus", "EventType", "activity_recorder"]
