"""Adapters for the build runner and the hosting platform."""

from dockyard.clients.base import (
    BuildDispatcher,
    PlatformProbe,
    ProbeResult,
    ProbeState,
    RepositoryLister,
)
from dockyard.clients.github import GitHubClient
from dockyard.clients.platform import YandexContainerProbe

__all__ = [
    "BuildDispatcher",
    "GitHubClient",
    "PlatformProbe",
    "ProbeResult",
    "ProbeState",
    "RepositoryLister",
    "YandexContainerProbe",
]
