"""Snapshot engine: timestamped copies of the live database file.

One call to ``backup_database`` produces one ``BackupArtifact``: the main
file copied whole into the backup directory, plus its ``-wal``/``-shm``
sidecars when present.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from debitmanager.core.constants import CANONICAL_SUFFIX
from debitmanager.core.errors import CopyFailed
from debitmanager.core.models import BackupArtifact
from debitmanager.core.utils import local_timestamp
from debitmanager.storage.handles import HandleReleaser
from debitmanager.storage.layout import StorageLayout, is_regular_file, resolve_database_path

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class SnapshotEngine:
    def __init__(
        self,
        layout: StorageLayout,
        releaser: HandleReleaser,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._layout = layout
        self._releaser = releaser
        self._clock = clock

    def artifact_name(self, when: datetime, attempt: int = 0) -> str:
        """``<name>-<local timestamp>.db``, with ``-<n>`` for same-second repeats."""
        stem = f"{self._layout.name}-{local_timestamp(when)}"
        if attempt:
            stem = f"{stem}-{attempt}"
        return stem + CANONICAL_SUFFIX

    async def backup_database(self) -> BackupArtifact:
        """Copy the active database (and sidecars) to a new artifact.

        Raises ``DatabaseNotFound`` when there is nothing to back up and
        ``CopyFailed`` when the main file copy fails. Handle release and
        sidecar copies are best-effort.
        """
        source = resolve_database_path(self._layout)

        # Handle release strictly precedes any copy of the live file.
        released = await self._releaser.release()
        if not released.ok:
            logger.info("Handle release did not succeed (%s); copying anyway", released.detail)

        source = await self._canonical_source(source)

        backup_dir = self._layout.backup_dir
        try:
            await asyncio.to_thread(backup_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise CopyFailed("snapshot", backup_dir, f"cannot create backup directory: {exc}") from exc

        created_at = self._clock()
        dest = self._unique_destination(created_at)

        logger.info("Backing up %s -> %s", source, dest)
        try:
            await asyncio.to_thread(shutil.copyfile, source, dest)
        except OSError as exc:
            raise CopyFailed("snapshot", source, str(exc)) from exc

        sidecars = await self._copy_sidecars(source, dest)
        try:
            size = dest.stat().st_size
        except OSError as exc:
            raise CopyFailed("snapshot", dest, str(exc)) from exc
        logger.info("Backup written: %s (%d bytes)", dest, size)

        return BackupArtifact(
            source=source,
            path=dest,
            created_at=created_at,
            sidecars=sidecars,
            size=size,
        )

    def list_backups(self) -> list[BackupArtifact]:
        """List artifacts in the backup directory, newest first."""
        backup_dir = self._layout.backup_dir
        if not backup_dir.exists():
            return []
        artifacts = []
        for path in backup_dir.glob(f"{self._layout.name}-*{CANONICAL_SUFFIX}"):
            if not path.is_file():
                continue
            stat = path.stat()
            artifacts.append(
                BackupArtifact(
                    path=path,
                    created_at=datetime.fromtimestamp(stat.st_mtime, UTC),
                    sidecars=[p for p in self._layout.sidecars(path) if p.exists()],
                    size=stat.st_size,
                )
            )
        return sorted(artifacts, key=lambda a: (a.created_at, a.name), reverse=True)

    async def _canonical_source(self, source: Path) -> Path:
        """Prefer (or create) the ``.db`` sibling so backups are of the canonical name."""
        if source.name.endswith(CANONICAL_SUFFIX):
            return source

        sibling = self._layout.canonical_for(source)
        if is_regular_file(sibling):
            logger.info("Preferring canonical source %s", sibling)
            return sibling

        try:
            await asyncio.to_thread(shutil.copyfile, source, sibling)
        except OSError as exc:
            logger.warning("Failed to copy bare database to %s; using %s: %s", sibling, source, exc)
            return source
        logger.info("Copied bare database to canonical %s", sibling)
        return sibling

    def _unique_destination(self, created_at: datetime) -> Path:
        attempt = 0
        while True:
            dest = self._layout.backup_dir / self.artifact_name(created_at, attempt)
            if not dest.exists():
                return dest
            attempt += 1

    async def _copy_sidecars(self, source: Path, dest: Path) -> list[Path]:
        copied: list[Path] = []
        for src, dst in zip(self._layout.sidecars(source), self._layout.sidecars(dest)):
            if not is_regular_file(src):
                continue
            try:
                await asyncio.to_thread(shutil.copyfile, src, dst)
            except OSError as exc:
                logger.warning("Failed to copy sidecar %s: %s", src, exc)
                continue
            logger.info("Copied sidecar alongside backup: %s", dst)
            copied.append(dst)
        return copied
