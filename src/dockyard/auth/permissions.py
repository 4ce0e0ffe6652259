"""Access Guard: who may view or mutate a project."""

from __future__ import annotations

from dockyard.models.identity import ANONYMOUS, Identity
from dockyard.models.project import Project


def can_mutate(identity: Identity | None, project: Project) -> bool:
    """Admins, the owner by email, or the owner by login may mutate a project."""
    if identity is None:
        return False
    if identity.is_admin:
        return True
    if project.owner != ANONYMOUS and identity.email == project.owner:
        return True
    return bool(
        identity.login
        and project.owner_login
        and project.owner_login != ANONYMOUS
        and identity.login == project.owner_login
    )


def can_view(identity: Identity | None, project: Project) -> bool:
    """Public projects are visible to anyone, the rest only to those who may mutate them."""
    return project.is_public or can_mutate(identity, project)
