"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from debitmanager.runtime.remount import RemountCoordinator
from debitmanager.storage.handles import HandleReleaser
from debitmanager.storage.layout import StorageLayout
from debitmanager.storage.snapshot import SnapshotEngine
from debitmanager.storage.sqlite import Database


class FakeHandle:
    def __init__(self, engine: FakeEngine, name: str) -> None:
        self._engine = engine
        self.name = name

    async def execute(self, sql: str) -> None:
        self._engine.journal.append(("checkpoint", self.name))
        if self.name in self._engine.fail_checkpoint:
            raise RuntimeError(f"checkpoint refused for {self.name}")

    async def close(self) -> None:
        self._engine.journal.append(("close", self.name))
        if self.name in self._engine.fail_close:
            raise RuntimeError(f"close refused for {self.name}")

    async def current_schema_version(self) -> int:
        return 2


class FakeEngine:
    """In-memory DatabaseEngine. Opening a name that is not on disk fails."""

    def __init__(self, sqlite_dir: Path) -> None:
        self.sqlite_dir = sqlite_dir
        self.journal: list[tuple[str, str]] = []
        self.fail_open: set[str] = set()
        self.fail_checkpoint: set[str] = set()
        self.fail_close: set[str] = set()

    async def open_by_name(self, name: str) -> FakeHandle:
        self.journal.append(("open", name))
        if name in self.fail_open or not (self.sqlite_dir / name).is_file():
            raise FileNotFoundError(name)
        return FakeHandle(self, name)


@pytest.fixture
def layout(tmp_path):
    layout = StorageLayout(tmp_path / "docs")
    layout.sqlite_dir.mkdir(parents=True)
    return layout


@pytest.fixture
def engine(layout):
    return FakeEngine(layout.sqlite_dir)


@pytest.fixture
def releaser(engine, layout):
    return HandleReleaser(engine, layout, settle_delay=0)


@pytest.fixture
def snapshots(layout, releaser):
    return SnapshotEngine(layout, releaser)


@pytest.fixture
def coordinator():
    coordinator = RemountCoordinator(debounce_seconds=0)
    yield coordinator
    coordinator.close()


@pytest.fixture
def db(tmp_path):
    db_path = tmp_path / "test.db"
    database = Database(db_path)
    yield database
    database.close()
