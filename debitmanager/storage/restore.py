"""Restore engine: replace the active database file, with rollback.

Sequence for one ``restore`` call::

    RELEASING_HANDLES -> SNAPSHOTTING -> STAGING -> SWAPPING -> REOPENING -> DONE
                                            \\__________/
                                          on failure: rollback from the
                                          pre-restore snapshot, remount,
                                          raise RestoreFailed

The canonical file is only replaced once a complete candidate exists on
disk beside it. Calls must not overlap; callers serialize them.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Protocol

from debitmanager.core.constants import RESTORE_TMP_SUFFIX, ROLLBACK_TMP_SUFFIX
from debitmanager.core.errors import CopyFailed, RestoreFailed
from debitmanager.core.models import (
    BackupArtifact,
    RestoreReport,
    RestoreState,
    RollbackStatus,
    StepResult,
)
from debitmanager.integrations.sinks import CloudSink
from debitmanager.runtime.remount import RemountCoordinator
from debitmanager.storage.handles import HandleReleaser
from debitmanager.storage.layout import StorageLayout, move_file
from debitmanager.storage.snapshot import SnapshotEngine

logger = logging.getLogger(__name__)


# ── Sources ───────────────────────────────────────────────────────────


class RestoreSource(Protocol):
    description: str

    async def stage(self, target: Path) -> None:
        """Write the full replacement database to *target*."""
        ...


class LocalFileSource:
    """A file the user picked (or a local backup artifact)."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.description = str(self.path)

    async def stage(self, target: Path) -> None:
        try:
            await asyncio.to_thread(shutil.copyfile, self.path, target)
        except OSError as exc:
            raise CopyFailed("staging", self.path, str(exc)) from exc


class RemoteSource:
    """The newest backup in the cloud drive."""

    description = "latest cloud backup"

    def __init__(self, cloud: CloudSink) -> None:
        self._cloud = cloud

    async def stage(self, target: Path) -> None:
        try:
            ok = await self._cloud.download_latest_to(target)
        except Exception as exc:
            raise CopyFailed("staging", target, f"download failed: {exc}") from exc
        if not ok:
            raise CopyFailed("staging", target, "no remote backup was downloaded")


class LiveConnection(Protocol):
    """The UI-held connection, closed directly before a restore."""

    def checkpoint_and_close(self) -> StepResult: ...


# ── Engine ────────────────────────────────────────────────────────────


class RestoreEngine:
    def __init__(
        self,
        layout: StorageLayout,
        releaser: HandleReleaser,
        snapshots: SnapshotEngine,
        coordinator: RemountCoordinator,
        live: LiveConnection | None = None,
        remount_timeout: float | None = None,
    ) -> None:
        self._layout = layout
        self._releaser = releaser
        self._snapshots = snapshots
        self._coordinator = coordinator
        self._live = live
        self._remount_timeout = remount_timeout

    async def restore(self, source: RestoreSource) -> RestoreReport:
        """Replace the canonical database with *source*.

        Returns the run's report on success. On a staging or swap failure the
        pre-restore snapshot (if any) is copied back, a remount is still
        requested, and ``RestoreFailed`` is raised carrying the report.
        """
        report = RestoreReport(target=self._layout.canonical_path)
        target = self._layout.canonical_path
        logger.info("Restoring %s from %s", target, source.description)

        self._enter(report, RestoreState.RELEASING_HANDLES)
        report.record(await self._releaser.release())
        if self._live is not None:
            try:
                report.record(self._live.checkpoint_and_close())
            except Exception as exc:
                logger.warning("Closing the live connection failed: %s", exc)
                report.record(StepResult.nonfatal("close_live_connection", str(exc)))

        self._enter(report, RestoreState.SNAPSHOTTING)
        report.pre_restore = await self._pre_restore_snapshot(report)

        temp = target.with_name(target.name + RESTORE_TMP_SUFFIX)
        try:
            self._enter(report, RestoreState.STAGING)
            await source.stage(temp)
            report.record(StepResult.succeeded("staging", str(temp)))

            self._enter(report, RestoreState.SWAPPING)
            await asyncio.to_thread(self._swap, temp, target)
            report.record(StepResult.succeeded("swapping", str(target)))
        except Exception as exc:
            logger.warning("Restore failed during %s: %s", report.state.value, exc)
            report.record(StepResult.fatal(report.state.value, str(exc)))
            try:
                temp.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove staging file %s", temp)
            final_state = await self._rollback(report, target)
            await self._reopen(report)
            report.state = final_state
            raise RestoreFailed(str(exc), report) from exc

        await self._reopen(report)
        self._enter(report, RestoreState.DONE)
        logger.info("Restore complete: %s", target)
        return report

    @staticmethod
    def _enter(report: RestoreReport, state: RestoreState) -> None:
        logger.debug("Restore state: %s -> %s", report.state.value, state.value)
        report.state = state

    async def _pre_restore_snapshot(self, report: RestoreReport) -> BackupArtifact | None:
        try:
            artifact = await self._snapshots.backup_database()
        except Exception as exc:
            logger.warning("Pre-restore snapshot failed (continuing without rollback): %s", exc)
            report.record(StepResult.nonfatal("pre_restore_snapshot", str(exc)))
            return None
        logger.info("Pre-restore snapshot saved at %s", artifact.path)
        report.record(StepResult.succeeded("pre_restore_snapshot", str(artifact.path)))
        return artifact

    def _swap(self, temp: Path, target: Path) -> None:
        try:
            move_file(temp, target)
        except OSError as exc:
            raise CopyFailed("swapping", target, str(exc)) from exc

        legacy = self._layout.legacy_path
        if legacy != target:
            try:
                legacy.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to delete legacy database %s: %s", legacy, exc)

        for sidecar in self._layout.sidecars(target):
            try:
                sidecar.unlink(missing_ok=True)
            except OSError as exc:
                raise CopyFailed("swapping", sidecar, f"stale sidecar not removed: {exc}") from exc
        for sidecar in self._layout.sidecars(legacy):
            try:
                sidecar.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to delete legacy sidecar %s: %s", sidecar, exc)

    async def _rollback(self, report: RestoreReport, target: Path) -> RestoreState:
        artifact = report.pre_restore
        if artifact is None:
            report.rollback = RollbackStatus.UNAVAILABLE
            report.rollback_detail = "no rollback available"
            logger.warning("No pre-restore snapshot; leaving %s as is", target)
            return RestoreState.FAILED

        logger.info("Rolling back from pre-restore snapshot %s", artifact.path)
        try:
            sidecar_failures = await asyncio.to_thread(self._copy_back, artifact, target)
        except OSError as exc:
            logger.warning("Rollback from snapshot failed: %s", exc)
            report.rollback = RollbackStatus.FAILED
            report.rollback_detail = str(exc)
            report.record(StepResult.fatal("rollback", str(exc)))
            return RestoreState.FAILED

        if sidecar_failures:
            report.rollback = RollbackStatus.PARTIAL
            report.rollback_detail = f"sidecars not restored: {', '.join(sidecar_failures)}"
            report.record(StepResult.nonfatal("rollback", report.rollback_detail))
        else:
            report.rollback = RollbackStatus.SUCCEEDED
            report.record(StepResult.succeeded("rollback", str(artifact.path)))
        return RestoreState.ROLLED_BACK

    def _copy_back(self, artifact: BackupArtifact, target: Path) -> list[str]:
        tmp = target.with_name(target.name + ROLLBACK_TMP_SUFFIX)
        try:
            shutil.copyfile(artifact.path, tmp)
            move_file(tmp, target)
        finally:
            tmp.unlink(missing_ok=True)

        failures: list[str] = []
        for src, dst in zip(self._layout.sidecars(artifact.path), self._layout.sidecars(target)):
            try:
                dst.unlink(missing_ok=True)
                if src.exists():
                    shutil.copyfile(src, dst)
            except OSError as exc:
                logger.warning("Failed to restore sidecar %s: %s", dst, exc)
                failures.append(dst.name)
        return failures

    async def _reopen(self, report: RestoreReport) -> None:
        """Ask the UI to reopen and wait for its acknowledgement."""
        previous = report.state
        report.state = RestoreState.REOPENING

        coordinator = self._coordinator
        if coordinator.pending:
            # An earlier reopen may have opened the pre-swap file.
            logger.info("Waiting for an earlier remount before requesting a fresh one")
            await self._await_ack()

        accepted = coordinator.request_remount()
        if not accepted and coordinator.has_callback:
            await asyncio.sleep(coordinator.debounce_remaining())
            accepted = coordinator.request_remount()

        if not accepted:
            report.record(StepResult.nonfatal("remount", "remount request not accepted"))
            report.remount_acknowledged = False
            report.state = previous
            return

        ok = await self._await_ack()
        report.remount_acknowledged = ok
        if ok:
            report.record(StepResult.succeeded("remount"))
        else:
            report.record(StepResult.nonfatal("remount", "remount not acknowledged"))
        report.state = previous

    async def _await_ack(self) -> bool:
        waiter = self._coordinator.await_remount_complete()
        try:
            if self._remount_timeout is not None:
                return await asyncio.wait_for(waiter, self._remount_timeout)
            return await waiter
        except TimeoutError:
            logger.warning("Remount not acknowledged within %.1fs", self._remount_timeout)
            return False
