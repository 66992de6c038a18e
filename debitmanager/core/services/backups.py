"""Backup service: the operations the backups screen triggers.

Wires the snapshot and restore engines to the metadata store and the sinks,
and serializes backup/restore runs: a second run while one is in flight is
rejected with ``OperationInProgress``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

from debitmanager.core.constants import BACKUP_MIME_TYPE, SHARE_DIALOG_TITLE
from debitmanager.core.errors import OperationInProgress, SinkUnavailable
from debitmanager.core.models import BackupArtifact, BackupNowResult, CloudFile, RestoreReport
from debitmanager.integrations.http_sink import HttpUploadSink
from debitmanager.integrations.sinks import CloudSink, FilePicker, ShareSink
from debitmanager.runtime.remount import RemountCoordinator
from debitmanager.storage.handles import HandleReleaser
from debitmanager.storage.layout import StorageLayout
from debitmanager.storage.metadata import BackupMetadataStore
from debitmanager.storage.restore import (
    LiveConnection,
    LocalFileSource,
    RemoteSource,
    RestoreEngine,
    RestoreSource,
)
from debitmanager.storage.snapshot import SnapshotEngine
from debitmanager.storage.sqlite import DatabaseEngine, SQLiteEngine

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


class BackupService:
    def __init__(
        self,
        layout: StorageLayout,
        releaser: HandleReleaser,
        snapshots: SnapshotEngine,
        restores: RestoreEngine,
        metadata: BackupMetadataStore,
        coordinator: RemountCoordinator,
        cloud: CloudSink | None = None,
        http: HttpUploadSink | None = None,
        share: ShareSink | None = None,
        picker: FilePicker | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.layout = layout
        self._releaser = releaser
        self._snapshots = snapshots
        self._restores = restores
        self._metadata = metadata
        self._coordinator = coordinator
        self._cloud = cloud
        self._http = http
        self._share = share
        self._picker = picker
        self._clock = clock
        self._busy = asyncio.Lock()

    @asynccontextmanager
    async def _exclusive(self, operation: str) -> AsyncIterator[None]:
        if self._busy.locked():
            raise OperationInProgress(f"Cannot {operation}: a backup or restore is already running")
        async with self._busy:
            yield

    # ── Backup ──────────────────────────────────────────────────────────

    async def backup(self) -> BackupArtifact:
        """Local backup only; records the last-backup timestamp."""
        async with self._exclusive("back up"):
            return await self._backup_locally()

    async def backup_now(self) -> BackupNowResult:
        """Back up locally, then hand the artifact to the first sink that takes it.

        Priority: cloud drive, then the generic HTTP endpoint, then the OS
        share sheet. Sink failures only downgrade the result.
        """
        async with self._exclusive("back up"):
            artifact = await self._backup_locally()

        path = artifact.path
        if await self.upload_to_cloud(path):
            return BackupNowResult(path=path, uploaded_to_cloud=True)

        uploaded = await self.upload_if_configured(path)
        shared = False
        if not uploaded:
            shared = await self.share_backup(path)
        return BackupNowResult(path=path, uploaded_to_generic_sink=uploaded, shared_via_os=shared)

    async def _backup_locally(self) -> BackupArtifact:
        artifact = await self._snapshots.backup_database()
        self._metadata.record(self._clock())
        return artifact

    async def upload_to_cloud(self, path: Path) -> bool:
        try:
            if self._cloud is None:
                raise SinkUnavailable("cloud drive", "not configured")
            if not await self._cloud.is_signed_in():
                raise SinkUnavailable("cloud drive", "not signed in")
            token = await self._cloud.get_access_token()
            folder_id = await self._cloud.get_or_create_backup_folder(token)
            await self._cloud.upload_file(token, path, path.name, folder_id)
        except SinkUnavailable as exc:
            logger.info("Skipping cloud upload: %s", exc)
            return False
        except Exception:
            logger.warning("Failed to upload backup to cloud drive", exc_info=True)
            return False
        logger.info("Backup uploaded to cloud drive: %s", path.name)
        return True

    async def upload_if_configured(self, path: Path) -> bool:
        if self._http is None or not self._http.configured:
            return False
        try:
            await self._http.upload(path)
        except SinkUnavailable as exc:
            logger.warning("Backup upload failed: %s", exc)
            return False
        return True

    async def share_backup(self, path: Path) -> bool:
        if self._share is None:
            return False
        try:
            if not await self._share.is_available():
                logger.info("OS share sheet is not available")
                return False
            await self._share.share(path, BACKUP_MIME_TYPE, SHARE_DIALOG_TITLE)
        except Exception:
            logger.warning("Share failed", exc_info=True)
            return False
        return True

    # ── Restore ─────────────────────────────────────────────────────────

    async def restore_from_file(self, path: Path | str) -> RestoreReport:
        return await self._restore(LocalFileSource(path))

    async def restore_from_cloud(self) -> RestoreReport:
        if self._cloud is None or not await self._cloud.is_signed_in():
            raise SinkUnavailable("cloud drive", "not signed in")
        return await self._restore(RemoteSource(self._cloud))

    async def restore_interactive(self) -> RestoreReport | None:
        """Restore from the cloud when signed in, else from a picked file.

        Returns None when the user cancels the picker; nothing is touched.
        """
        if self._cloud is not None and await self._cloud.is_signed_in():
            return await self.restore_from_cloud()
        if self._picker is None:
            raise SinkUnavailable("file picker", "not available")
        picked = await self._picker.pick()
        if picked is None:
            logger.info("Restore cancelled in file picker")
            return None
        return await self.restore_from_file(picked)

    async def _restore(self, source: RestoreSource) -> RestoreReport:
        async with self._exclusive("restore"):
            return await self._restores.restore(source)

    # ── Connection refresh ──────────────────────────────────────────────

    async def refresh_database(self) -> bool:
        """Release handles and ask the UI for a fresh connection.

        Used by read paths retrying after a closed-resource error. Returns
        False when the request was debounced or not acknowledged.
        """
        if self._coordinator.debounce_remaining() > 0:
            logger.info("Refresh skipped: remount requested too recently")
            return False
        await self._releaser.release()
        if not self._coordinator.request_remount():
            return False
        return await self._coordinator.await_remount_complete()

    # ── Listings ────────────────────────────────────────────────────────

    def last_backup(self) -> datetime | None:
        return self._metadata.last_backup()

    def list_local_backups(self) -> list[BackupArtifact]:
        return self._snapshots.list_backups()

    async def list_cloud_backups(self) -> list[CloudFile]:
        """Cloud backups, newest first. Empty when not signed in."""
        if self._cloud is None or not await self._cloud.is_signed_in():
            return []
        token = await self._cloud.get_access_token()
        folder_id = await self._cloud.get_or_create_backup_folder(token)
        files = [CloudFile.model_validate(f) for f in await self._cloud.list_files(token, folder_id)]
        return sorted(files, key=lambda f: f.created_time or _EPOCH, reverse=True)


def build_backup_service(
    layout: StorageLayout,
    coordinator: RemountCoordinator,
    live: LiveConnection | None = None,
    engine: DatabaseEngine | None = None,
    settle_delay: float | None = None,
    remount_timeout: float | None = None,
    **sinks,
) -> BackupService:
    """Assemble a ``BackupService`` with the default SQLite engine.

    ``sinks`` accepts ``cloud``, ``http``, ``share`` and ``picker``.
    """
    engine = engine or SQLiteEngine(layout.sqlite_dir)
    if settle_delay is None:
        releaser = HandleReleaser(engine, layout)
    else:
        releaser = HandleReleaser(engine, layout, settle_delay=settle_delay)
    snapshots = SnapshotEngine(layout, releaser)
    restores = RestoreEngine(
        layout, releaser, snapshots, coordinator, live=live, remount_timeout=remount_timeout
    )
    return BackupService(
        layout,
        releaser,
        snapshots,
        restores,
        BackupMetadataStore(layout.meta_file),
        coordinator,
        **sinks,
    )
