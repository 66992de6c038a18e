"""On-disk layout of the application-private document root and the path resolver.

    <root>/SQLite/debitmanager.db          canonical database file
    <root>/SQLite/debitmanager             legacy bare file (no extension)
    <root>/SQLite/debitmanager.db-wal|-shm write-ahead-log sidecars
    <root>/backups/debitmanager-<ts>.db    backup artifacts
    <root>/backup_meta.json                last-backup metadata
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from debitmanager.core.constants import (
    BACKUP_DIRNAME,
    CANONICAL_SUFFIX,
    DATABASE_NAME,
    META_FILENAME,
    RESTORE_TMP_SUFFIX,
    ROLLBACK_TMP_SUFFIX,
    SIDECAR_SUFFIXES,
    SQLITE_DIRNAME,
)
from debitmanager.core.errors import DatabaseNotFound
from debitmanager.core.models import StepResult

logger = logging.getLogger(__name__)

_TRANSIENT_SUFFIXES = (*SIDECAR_SUFFIXES, RESTORE_TMP_SUFFIX, ROLLBACK_TMP_SUFFIX)


@dataclass(frozen=True)
class StorageLayout:
    """Every path the subsystem touches, derived from one document root."""

    root: Path
    name: str = DATABASE_NAME

    @property
    def sqlite_dir(self) -> Path:
        return self.root / SQLITE_DIRNAME

    @property
    def backup_dir(self) -> Path:
        return self.root / BACKUP_DIRNAME

    @property
    def meta_file(self) -> Path:
        return self.root / META_FILENAME

    @property
    def canonical_name(self) -> str:
        return f"{self.name}{CANONICAL_SUFFIX}"

    @property
    def canonical_path(self) -> Path:
        return self.sqlite_dir / self.canonical_name

    @property
    def legacy_path(self) -> Path:
        return self.sqlite_dir / self.name

    @property
    def candidate_names(self) -> tuple[str, ...]:
        """Filenames in order of preference: canonical first, then legacy."""
        return (self.canonical_name, self.name)

    @staticmethod
    def sidecars(path: Path) -> list[Path]:
        return [path.with_name(path.name + suffix) for suffix in SIDECAR_SUFFIXES]

    @staticmethod
    def canonical_for(path: Path) -> Path:
        """The ``.db`` sibling of *path* (or *path* itself if already canonical)."""
        if path.name.endswith(CANONICAL_SUFFIX):
            return path
        return path.with_name(path.name + CANONICAL_SUFFIX)


def is_regular_file(path: Path) -> bool:
    """Existence check; stat errors count as "does not exist"."""
    try:
        return path.is_file()
    except OSError:
        return False


def resolve_database_path(layout: StorageLayout) -> Path:
    """Locate the single active database file.

    Checks the fixed candidates in order, then falls back to the first
    directory entry starting with the database name.
    """
    for name in layout.candidate_names:
        candidate = layout.sqlite_dir / name
        if is_regular_file(candidate):
            return candidate

    try:
        listing = sorted(os.listdir(layout.sqlite_dir))
    except OSError:
        listing = []
    for entry in listing:
        if not entry.startswith(layout.name) or entry.endswith(_TRANSIENT_SUFFIXES):
            continue
        if is_regular_file(layout.sqlite_dir / entry):
            logger.info("Resolved database via directory listing: %s", entry)
            return layout.sqlite_dir / entry

    raise DatabaseNotFound(layout.sqlite_dir)


def list_sqlite_files(layout: StorageLayout) -> list[str]:
    """Names of everything in the SQLite directory (diagnostics)."""
    try:
        return sorted(os.listdir(layout.sqlite_dir))
    except OSError:
        return []


def move_file(src: Path, dst: Path) -> None:
    """Move *src* onto *dst*, replacing it.

    Rename when possible; otherwise copy then delete the source.
    """
    try:
        os.replace(src, dst)
    except OSError:
        logger.warning("Rename %s -> %s failed; using copy+delete", src, dst, exc_info=True)
        shutil.copyfile(src, dst)
        src.unlink(missing_ok=True)


def migrate_legacy_database(layout: StorageLayout) -> StepResult:
    """Move a bare legacy database (and its sidecars) to the canonical name.

    Only acts when the bare file exists and the canonical one does not.
    Never deletes anything when both are present.
    """
    step = "migrate_legacy"
    bare = layout.legacy_path
    canonical = layout.canonical_path

    if not (is_regular_file(bare) and not is_regular_file(canonical)):
        logger.debug(
            "No legacy migration needed (bare=%s, canonical=%s)",
            is_regular_file(bare),
            is_regular_file(canonical),
        )
        return StepResult.succeeded(step, "nothing to migrate")

    logger.info("Migrating legacy database %s -> %s", bare, canonical)
    try:
        move_file(bare, canonical)
    except OSError as exc:
        logger.warning("Legacy database migration failed: %s", exc)
        return StepResult.nonfatal(step, f"failed to move {bare}: {exc}")

    failures: list[str] = []
    for src, dst in zip(layout.sidecars(bare), layout.sidecars(canonical)):
        if not src.exists():
            continue
        try:
            move_file(src, dst)
        except OSError as exc:
            logger.warning("Failed to move sidecar %s -> %s: %s", src, dst, exc)
            failures.append(src.name)

    if failures:
        return StepResult.nonfatal(step, f"sidecars not moved: {', '.join(failures)}")
    return StepResult.succeeded(step, f"moved {bare.name} -> {canonical.name}")
