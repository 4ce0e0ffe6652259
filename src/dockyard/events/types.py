"""Event type constants for Dockyard."""

from enum import StrEnum


class EventType(StrEnum):
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"
    PROJECT_DELETED = "project.deleted"

    BUILD_DISPATCHED = "build.dispatched"
    BUILD_DISPATCH_FAILED = "build.dispatch_failed"
    BUILD_COMPLETED = "build.completed"

    STATUS_RECONCILED = "status.reconciled"
    PUSH_RECEIVED = "push.received"
