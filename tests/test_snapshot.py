"""Tests for the snapshot engine."""

import os
import shutil
from datetime import UTC, datetime, timedelta, timezone

import pytest

from debitmanager.core.errors import CopyFailed, DatabaseNotFound
from debitmanager.storage.snapshot import SnapshotEngine

FIXED = datetime(2024, 3, 9, 14, 5, 7, tzinfo=timezone(timedelta(hours=2)))


def _fixed_clock():
    return FIXED


class TestArtifactName:
    def test_name_format(self, layout, releaser):
        engine = SnapshotEngine(layout, releaser)
        assert engine.artifact_name(FIXED) == "debitmanager-2024-03-09T14-05-07+0200.db"

    def test_repeat_suffix(self, layout, releaser):
        engine = SnapshotEngine(layout, releaser)
        assert engine.artifact_name(FIXED, 2) == "debitmanager-2024-03-09T14-05-07+0200-2.db"


class TestBackupDatabase:
    @pytest.mark.asyncio
    async def test_source_unchanged_and_artifact_created(self, layout, snapshots):
        content = os.urandom(4096)
        layout.canonical_path.write_bytes(content)

        artifact = await snapshots.backup_database()

        assert layout.canonical_path.read_bytes() == content
        assert artifact.path.parent == layout.backup_dir
        assert artifact.path.read_bytes() == content
        assert artifact.size == 4096
        assert artifact.source == layout.canonical_path

    @pytest.mark.asyncio
    async def test_sidecars_copied(self, layout, snapshots):
        layout.canonical_path.write_bytes(b"main")
        wal, shm = layout.sidecars(layout.canonical_path)
        wal.write_bytes(b"wal-bytes")
        shm.write_bytes(b"shm-bytes")

        artifact = await snapshots.backup_database()

        art_wal, art_shm = layout.sidecars(artifact.path)
        assert art_wal.read_bytes() == b"wal-bytes"
        assert art_shm.read_bytes() == b"shm-bytes"
        assert artifact.sidecars == [art_wal, art_shm]

    @pytest.mark.asyncio
    async def test_missing_sidecars_skipped(self, layout, snapshots):
        layout.canonical_path.write_bytes(b"main")
        artifact = await snapshots.backup_database()
        assert artifact.sidecars == []
        assert sorted(p.name for p in layout.backup_dir.iterdir()) == [artifact.name]

    @pytest.mark.asyncio
    async def test_release_precedes_every_copy(self, layout, engine, snapshots, monkeypatch):
        layout.legacy_path.write_bytes(b"bare")
        real_copy = shutil.copyfile

        def recording_copy(src, dst):
            engine.journal.append(("copy", os.fspath(src)))
            return real_copy(src, dst)

        monkeypatch.setattr(shutil, "copyfile", recording_copy)

        await snapshots.backup_database()

        kinds = [kind for kind, _ in engine.journal]
        assert "copy" in kinds
        assert max(i for i, k in enumerate(kinds) if k == "close") < kinds.index("copy")

    @pytest.mark.asyncio
    async def test_nothing_to_back_up(self, snapshots):
        with pytest.raises(DatabaseNotFound):
            await snapshots.backup_database()

    @pytest.mark.asyncio
    async def test_unusable_backup_directory_raises(self, layout, snapshots):
        layout.canonical_path.write_bytes(b"main")
        layout.backup_dir.write_bytes(b"a file where the directory should be")

        with pytest.raises(CopyFailed) as exc_info:
            await snapshots.backup_database()
        assert exc_info.value.path == layout.backup_dir
        assert layout.canonical_path.read_bytes() == b"main"

    @pytest.mark.asyncio
    async def test_copy_failure_raises(self, layout, snapshots, monkeypatch):
        layout.canonical_path.write_bytes(b"main")

        def broken_copy(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(shutil, "copyfile", broken_copy)
        with pytest.raises(CopyFailed) as exc_info:
            await snapshots.backup_database()
        assert exc_info.value.step == "snapshot"

    @pytest.mark.asyncio
    async def test_same_second_backups_get_distinct_names(self, layout, releaser):
        layout.canonical_path.write_bytes(b"main")
        engine = SnapshotEngine(layout, releaser, clock=_fixed_clock)

        first = await engine.backup_database()
        second = await engine.backup_database()

        assert first.path != second.path
        assert second.name == "debitmanager-2024-03-09T14-05-07+0200-1.db"
        assert first.path.exists()


class TestBareDatabaseScenario:
    @pytest.mark.asyncio
    async def test_bare_file_copied_to_canonical_then_backed_up(self, layout, snapshots):
        layout.legacy_path.write_bytes(b"\x01" * 1024)

        artifact = await snapshots.backup_database()

        assert layout.canonical_path.read_bytes() == b"\x01" * 1024
        assert artifact.source == layout.canonical_path
        artifacts = [p for p in layout.backup_dir.iterdir() if p.suffix == ".db"]
        assert artifacts == [artifact.path]
        assert artifact.size == 1024

    @pytest.mark.asyncio
    async def test_existing_canonical_sibling_preferred(self, layout, snapshots, monkeypatch):
        layout.legacy_path.write_bytes(b"bare")
        monkeypatch.setattr(
            "debitmanager.storage.snapshot.resolve_database_path",
            lambda _layout: layout.legacy_path,
        )
        layout.canonical_path.write_bytes(b"canonical")

        artifact = await snapshots.backup_database()

        assert artifact.path.read_bytes() == b"canonical"
        assert layout.legacy_path.read_bytes() == b"bare"


class TestListBackups:
    def test_empty_when_no_directory(self, snapshots):
        assert snapshots.list_backups() == []

    def test_newest_first(self, layout, snapshots):
        layout.backup_dir.mkdir()
        old = layout.backup_dir / "debitmanager-2024-01-01T00-00-00+0000.db"
        new = layout.backup_dir / "debitmanager-2024-02-01T00-00-00+0000.db"
        old.write_bytes(b"old")
        new.write_bytes(b"newer")
        (layout.backup_dir / "debitmanager-2024-02-01T00-00-00+0000.db-wal").write_bytes(b"w")
        (layout.backup_dir / "notes.txt").write_bytes(b"")
        base = datetime(2024, 1, 1, tzinfo=UTC).timestamp()
        os.utime(old, (base, base))
        os.utime(new, (base + 100, base + 100))

        listed = snapshots.list_backups()

        assert [a.path for a in listed] == [new, old]
        assert listed[0].size == 5
        assert [p.name for p in listed[0].sidecars] == [
            "debitmanager-2024-02-01T00-00-00+0000.db-wal"
        ]
