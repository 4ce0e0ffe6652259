"""Wiring of the store, clients and engine for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dockyard.clients.base import BuildDispatcher, PlatformProbe, RepositoryLister
from dockyard.clients.github import GitHubClient
from dockyard.clients.platform import YandexContainerProbe
from dockyard.config import Config
from dockyard.core.reconciler import ReconciliationEngine
from dockyard.events.bus import EventBus, activity_recorder
from dockyard.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything a surface (HTTP, MCP, CLI) needs to call the engine."""

    config: Config
    store: SQLiteStore
    bus: EventBus
    engine: ReconciliationEngine

    async def close(self) -> None:
        await self.engine.aclose()
        await self.store.close()


async def open_runtime(
    config: Config,
    *,
    dispatcher: BuildDispatcher | None = None,
    probe: PlatformProbe | None = None,
    repositories: RepositoryLister | None = None,
) -> Runtime:
    """Open the record store and build the engine.

    External clients are created once here and released by ``Runtime.close``.
    """
    store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
    await store.initialize()

    bus = EventBus()
    bus.on_all(activity_recorder(store))

    if dispatcher is None:
        github = GitHubClient.from_config(config)
        dispatcher = github
        repositories = repositories or github
    if probe is None:
        probe = YandexContainerProbe.from_config(config)

    engine = ReconciliationEngine(
        store,
        dispatcher,
        probe,
        bus,
        config=config,
        repositories=repositories,
    )
    logger.info("Dockyard runtime ready (store %s)", config.db_path)
    return Runtime(config=config, store=store, bus=bus, engine=engine)
