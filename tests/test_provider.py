"""Tests for the UI-held connection provider."""

import pytest

from debitmanager.core.models import StepOutcome
from debitmanager.runtime.provider import ConnectionProvider
from debitmanager.runtime.remount import RemountCoordinator
from debitmanager.storage.sqlite import Database


@pytest.fixture
def provider(layout):
    coordinator = RemountCoordinator(debounce_seconds=0)
    provider = ConnectionProvider(layout, coordinator)
    yield provider, coordinator
    provider.close()
    coordinator.close()


class TestStart:
    def test_creates_and_migrates_canonical(self, layout, provider):
        conn, coordinator = provider
        conn.start()
        assert layout.canonical_path.exists()
        assert conn.db.schema_version() == 2
        assert conn.generation == 1
        assert coordinator.has_callback

    def test_migrates_legacy_file_first(self, layout, provider):
        legacy = Database(layout.legacy_path)
        legacy.execute("CREATE TABLE marker (x INTEGER)")
        legacy.close()

        conn, _ = provider
        conn.start()

        assert not layout.legacy_path.exists()
        row = conn.db.fetchone("SELECT name FROM sqlite_master WHERE name = 'marker'")
        assert row is not None


class TestClose:
    def test_checkpoint_and_close(self, provider):
        conn, _ = provider
        conn.start()
        result = conn.checkpoint_and_close()
        assert result.ok
        assert not conn.is_open
        with pytest.raises(RuntimeError):
            conn.db

    def test_close_when_not_open_is_nonfatal(self, provider):
        conn, _ = provider
        result = conn.checkpoint_and_close()
        assert result.outcome == StepOutcome.FAILED_NONFATAL

    def test_close_unregisters(self, provider):
        conn, coordinator = provider
        conn.start()
        conn.close()
        assert not coordinator.has_callback

    @pytest.mark.asyncio
    async def test_request_after_close_reopens_nothing(self, provider):
        conn, coordinator = provider
        conn.start()
        conn.close()

        assert coordinator.request_remount() is False
        assert not conn.is_open
        assert conn.generation == 1


class TestRemount:
    @pytest.mark.asyncio
    async def test_remount_reopens_and_acknowledges(self, provider):
        conn, coordinator = provider
        conn.start()
        old_db = conn.db

        assert coordinator.request_remount() is True
        assert old_db.closed
        assert await coordinator.await_remount_complete() is True

        assert conn.is_open
        assert conn.db is not old_db
        assert conn.generation == 2

    @pytest.mark.asyncio
    async def test_failed_reopen_acknowledged_as_failure(self, provider, monkeypatch):
        conn, coordinator = provider
        conn.start()

        def broken_open():
            raise RuntimeError("disk gone")

        monkeypatch.setattr(conn, "_open", broken_open)
        coordinator.request_remount()

        assert await coordinator.await_remount_complete() is False
        assert not conn.is_open
