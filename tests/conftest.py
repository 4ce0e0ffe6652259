"""Shared test fixtures for Dockyard."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from dockyard.clients.base import BuildDispatcher, PlatformProbe, ProbeResult, ProbeState
from dockyard.config import Config
from dockyard.core.reconciler import ReconciliationEngine
from dockyard.errors import DispatchFailed, ProbeUnavailable
from dockyard.events.bus import EventBus, activity_recorder
from dockyard.models.identity import Identity
from dockyard.storage.sqlite_store import SQLiteStore

CALLBACK_SECRET = "cb-secret"
JWT_SECRET = "test-secret-key-do-not-use"


class FakeDispatcher(BuildDispatcher):
    """Records dispatch calls; fails on demand."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_with: str | None = None
        self.fail_for: set[str] = set()
        self.closed = False

    async def dispatch(self, **kwargs: Any) -> None:
        self.calls.append(kwargs)
        if self.fail_with is not None or kwargs["project_id"] in self.fail_for:
            raise DispatchFailed(self.fail_with or "runner rejected")

    async def aclose(self) -> None:
        self.closed = True


class FakeProbe(PlatformProbe):
    """Returns a preset state per unit; ABSENT by default."""

    def __init__(self) -> None:
        self.states: dict[str, ProbeResult] = {}
        self.unavailable = False
        self.lookups: list[str] = []

    async def lookup(self, unit_name: str) -> ProbeResult:
        self.lookups.append(unit_name)
        if self.unavailable:
            raise ProbeUnavailable("platform down")
        return self.states.get(unit_name, ProbeResult(ProbeState.ABSENT))


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
async def store(tmp_db: Path) -> SQLiteStore:
    s = SQLiteStore(tmp_db)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        data_path=tmp_path,
        jwt_secret=JWT_SECRET,
        callback_secret=CALLBACK_SECRET,
        admin_emails=["root@dockyard.dev"],
    )


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def bus(store: SQLiteStore) -> EventBus:
    b = EventBus()
    b.on_all(activity_recorder(store))
    return b


@pytest.fixture
async def engine(
    store: SQLiteStore,
    dispatcher: FakeDispatcher,
    probe: FakeProbe,
    bus: EventBus,
    config: Config,
) -> ReconciliationEngine:
    e = ReconciliationEngine(store, dispatcher, probe, bus, config=config)
    yield e
    await e.drain()


@pytest.fixture
def alice() -> Identity:
    return Identity(email="alice@example.com", login="alice")


@pytest.fixture
def bob() -> Identity:
    return Identity(email="bob@example.com", login="bob")


@pytest.fixture
def admin() -> Identity:
    return Identity(email="ops@example.com", login="ops", role="admin")
