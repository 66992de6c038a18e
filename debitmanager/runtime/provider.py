"""Connection provider: the UI-owned database connection and its remount cycle."""

from __future__ import annotations

import asyncio
import logging

from debitmanager.core.models import StepResult
from debitmanager.runtime.remount import RemountCoordinator
from debitmanager.storage.layout import StorageLayout, migrate_legacy_database
from debitmanager.storage.migrations.runner import ensure_schema
from debitmanager.storage.sqlite import Database

logger = logging.getLogger(__name__)


class ConnectionProvider:
    """Holds the long-lived ``Database`` the UI reads from.

    On a remount request the current connection is checkpointed and closed
    immediately, and a fresh one is opened, migrated and acknowledged on the
    event loop.
    """

    def __init__(self, layout: StorageLayout, coordinator: RemountCoordinator) -> None:
        self._layout = layout
        self._coordinator = coordinator
        self._db: Database | None = None
        self._tasks: set[asyncio.Task] = set()
        self.generation = 0

    @property
    def db(self) -> Database:
        if self._db is None or self._db.closed:
            raise RuntimeError("Database connection is not open")
        return self._db

    @property
    def is_open(self) -> bool:
        return self._db is not None and not self._db.closed

    def start(self) -> None:
        """Migrate legacy filenames, open the connection and register for remounts."""
        migrate_legacy_database(self._layout)
        self._coordinator.register(self._on_remount_requested)
        self._open()

    def close(self) -> None:
        self._coordinator.unregister(self._on_remount_requested)
        for task in list(self._tasks):
            task.cancel()
        self._close_connection()

    def checkpoint_and_close(self) -> StepResult:
        """Release the live connection directly (restore's second release pass)."""
        if not self.is_open:
            return StepResult.nonfatal("close_live_connection", "no live connection")
        self._close_connection()
        return StepResult.succeeded("close_live_connection", str(self._layout.canonical_path))

    def _open(self) -> None:
        db = Database(self._layout.canonical_path)
        try:
            logger.debug("Database status before migrate: %s", db.status())
            ensure_schema(db)
            logger.debug("Database status after migrate: %s", db.status())
        except Exception:
            db.close()
            raise
        self._db = db
        self.generation += 1
        logger.info("Database connection opened (generation %d)", self.generation)

    def _close_connection(self) -> None:
        if self._db is None:
            return
        db, self._db = self._db, None
        if db.closed:
            return
        try:
            db.checkpoint()
        except Exception as exc:
            logger.warning("Checkpoint before close failed: %s", exc)
        db.close()
        logger.info("Database connection closed")

    def _on_remount_requested(self) -> None:
        self._close_connection()
        task = asyncio.get_running_loop().create_task(self._reopen())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reopen(self) -> None:
        try:
            self._open()
        except Exception:
            logger.exception("Failed to reopen database connection")
            self._coordinator.notify_remount_complete(False)
            return
        self._coordinator.notify_remount_complete(True)
