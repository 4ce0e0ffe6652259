"""Abstract record store interface for Dockyard."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """Durable key-value store of project records keyed by project id."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize schema and connections."""

    @abstractmethod
    async def close(self) -> None:
        """Close all connections."""

    # --- Project operations ---

    @abstractmethod
    async def insert_project(self, project: dict[str, Any]) -> dict[str, Any]:
        """Atomically create a project. Raises AlreadyExists on a duplicate id."""

    @abstractmethod
    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        """Get a project by id. Returns None if not found."""

    @abstractmethod
    async def update_project(
        self,
        project_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> dict[str, Any] | None:
        """Merge-patch a project.

        With ``expected_status`` the patch only applies while the stored status
        still equals it. Returns the updated record, or None when nothing matched.
        """

    @abstractmethod
    async def delete_project(self, project_id: str) -> bool:
        """Delete a project. Returns True if found and deleted."""

    @abstractmethod
    async def find_by_repo_url(self, repo_url: str) -> list[dict[str, Any]]:
        """All projects tracking the given repository URL."""

    @abstractmethod
    async def list_projects(self, *, owner: str | None = None) -> list[dict[str, Any]]:
        """List projects, optionally restricted to one owner."""

    # --- User operations ---

    @abstractmethod
    async def upsert_user(
        self,
        email: str,
        *,
        login: str | None = None,
        role: str | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        """Create or update a user. None arguments keep the stored value."""

    @abstractmethod
    async def get_user(self, email: str) -> dict[str, Any] | None:
        """Get a user by email."""

    @abstractmethod
    async def get_user_by_login(self, login: str) -> dict[str, Any] | None:
        """Get a user by display login."""

    # --- Activity log ---

    @abstractmethod
    async def log_activity(self, entry: dict[str, Any]) -> None:
        """Append an activity entry."""

    @abstractmethod
    async def get_activity_log(
        self, *, project_id: str | None = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        """Recent activity, newest first."""

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Counts for status surfaces."""
