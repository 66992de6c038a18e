"""Last-backup metadata sidecar (``backup_meta.json``)."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from debitmanager.core.models import BackupMetadata
from debitmanager.core.utils import safe_json_loads

logger = logging.getLogger(__name__)


class BackupMetadataStore:
    def __init__(self, meta_file: Path) -> None:
        self.meta_file = Path(meta_file)

    def read(self) -> BackupMetadata | None:
        """Return the stored record, or None if missing or unreadable."""
        try:
            raw = self.meta_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Failed to read last backup timestamp: %s", exc)
            return None

        data = safe_json_loads(raw, default=None, context=str(self.meta_file))
        if not isinstance(data, dict):
            return None
        try:
            return BackupMetadata.model_validate(data)
        except ValidationError:
            logger.warning("Invalid backup metadata in %s", self.meta_file)
            return None

    def last_backup(self) -> datetime | None:
        meta = self.read()
        return meta.last_backup if meta else None

    def record(self, when: datetime) -> bool:
        """Store *when* unless a newer instant is already recorded.

        Returns False when the write failed or was skipped.
        """
        meta = BackupMetadata(last_backup=when)
        current = self.read()
        if current is not None and current.last_backup > meta.last_backup:
            logger.warning(
                "Not regressing last backup from %s to %s", current.last_backup, meta.last_backup
            )
            return False
        try:
            self.meta_file.parent.mkdir(parents=True, exist_ok=True)
            self.meta_file.write_text(meta.model_dump_json(by_alias=True), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write last backup timestamp: %s", exc)
            return False
        return True
