"""Interfaces of the external collaborators the engine talks to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from dockyard.models.project import EnvVar


class ProbeState(StrEnum):
    ACTIVE = "active"
    ERROR = "error"
    ABSENT = "absent"


@dataclass(frozen=True)
class ProbeResult:
    """Live state of a deployable unit on the hosting platform."""

    state: ProbeState
    url: str | None = None


class BuildDispatcher(ABC):
    """Sends a single "run build" instruction to the CI runner."""

    @abstractmethod
    async def dispatch(
        self,
        *,
        project_id: str,
        repo_url: str,
        owner: str,
        env_vars: list[EnvVar],
        access_token: str | None = None,
        attempt: int = 0,
    ) -> None:
        """Trigger a build. Raises DispatchFailed on any failure."""

    async def aclose(self) -> None:
        """Release the underlying connection."""


class PlatformProbe(ABC):
    """Read-only view of the hosting platform."""

    @abstractmethod
    async def lookup(self, unit_name: str) -> ProbeResult:
        """Live state of a unit. Raises ProbeUnavailable when the platform cannot be queried."""

    async def aclose(self) -> None:
        """Release the underlying connection."""


class RepositoryLister(ABC):
    """Lists the repositories a user can deploy from."""

    @abstractmethod
    async def list_repositories(self, access_token: str) -> list[dict[str, Any]]:
        """Repositories visible to the token's owner."""
