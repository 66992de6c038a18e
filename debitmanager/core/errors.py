"""Exception taxonomy for the backup/restore subsystem.

Convention:
- Best-effort steps (handle release, sidecar copies, metadata writes) never
  raise; they return a ``StepResult`` instead.
- Everything else raises one of the types below, carrying enough context
  (step, path) to be logged meaningfully by the caller.
"""

from __future__ import annotations

from pathlib import Path

from debitmanager.core.models import RestoreReport, RollbackStatus


class BackupError(Exception):
    """Base class for all subsystem errors."""


class DatabaseNotFound(BackupError):
    """No database file could be located in the SQLite directory."""

    def __init__(self, sqlite_dir: Path) -> None:
        super().__init__(f"Database file not found in SQLite directory: {sqlite_dir}")
        self.sqlite_dir = sqlite_dir


class HandleReleaseFailed(BackupError):
    """A checkpoint/close attempt failed. Never fatal; logged by callers."""


class CopyFailed(BackupError):
    """A file copy or move failed during snapshot, staging, swap or rollback."""

    def __init__(self, step: str, path: Path | str, reason: str) -> None:
        super().__init__(f"{step}: copy failed for {path}: {reason}")
        self.step = step
        self.path = Path(path)
        self.reason = reason


class SinkUnavailable(BackupError):
    """A cloud/HTTP/share sink is unreachable, unconfigured or declined."""

    def __init__(self, sink: str, reason: str) -> None:
        super().__init__(f"{sink} unavailable: {reason}")
        self.sink = sink
        self.reason = reason


class OperationInProgress(BackupError):
    """A backup or restore is already running."""


class RestoreFailed(BackupError):
    """Restore could not complete. Raised only after rollback was attempted."""

    def __init__(self, reason: str, report: RestoreReport) -> None:
        super().__init__(f"Restore failed ({report.rollback.value}): {reason}")
        self.reason = reason
        self.report = report

    @property
    def rollback(self) -> RollbackStatus:
        return self.report.rollback

    @property
    def user_message(self) -> str:
        """Message shown to the user, depending on how rollback went."""
        if self.rollback == RollbackStatus.SUCCEEDED:
            return "Restore failed but your prior data was restored."
        detail = self.report.rollback_detail or self.reason
        if self.rollback == RollbackStatus.PARTIAL:
            return (
                "Restore failed; your prior data was restored but recent changes "
                f"may be missing: {detail}"
            )
        if self.rollback == RollbackStatus.FAILED:
            return f"Restore failed and rollback also failed: {detail}"
        return f"Restore failed: {self.reason}"
