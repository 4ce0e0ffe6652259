"""Dockyard data models."""

from dockyard.models.identity import ANONYMOUS, Identity
from dockyard.models.project import (
    BuildCallback,
    EnvVar,
    Project,
    ProjectStatus,
    PushResult,
    utc_now,
)

__all__ = [
    "ANONYMOUS",
    "BuildCallback",
    "EnvVar",
    "Identity",
    "Project",
    "ProjectStatus",
    "PushResult",
    "utc_now",
]
