"""Handle-release protocol: checkpoint and close database handles before a copy.

Best-effort by contract. Every candidate filename is opened, checkpointed
with ``wal_checkpoint(TRUNCATE)`` and closed, even when an earlier one
fails, so whichever handle was actually live gets released. Nothing here
raises to the caller; the outcome is a ``StepResult``.
"""

from __future__ import annotations

import asyncio
import logging

from debitmanager.core.constants import CHECKPOINT_SQL, HANDLE_SETTLE_DELAY_SECONDS
from debitmanager.core.errors import HandleReleaseFailed
from debitmanager.core.models import StepResult
from debitmanager.storage.layout import StorageLayout
from debitmanager.storage.sqlite import DatabaseEngine

logger = logging.getLogger(__name__)


class HandleReleaser:
    def __init__(
        self,
        engine: DatabaseEngine,
        layout: StorageLayout,
        settle_delay: float = HANDLE_SETTLE_DELAY_SECONDS,
    ) -> None:
        self._engine = engine
        self._layout = layout
        self._settle_delay = settle_delay

    async def release(self) -> StepResult:
        """Checkpoint and close every candidate; succeed if any one did."""
        released: list[str] = []
        failures: list[str] = []

        for name in self._layout.candidate_names:
            try:
                await self._checkpoint_and_close(name)
            except HandleReleaseFailed as exc:
                logger.debug("Handle release skipped for %s: %s", name, exc)
                failures.append(str(exc))
                continue
            released.append(name)
            logger.info("Checkpointed and closed %s", name)

        if not released:
            logger.info("Could not open any database handle to checkpoint; proceeding with copy")
            return StepResult.nonfatal("release_handles", "; ".join(failures))

        if self._settle_delay > 0:
            await asyncio.sleep(self._settle_delay)
        return StepResult.succeeded("release_handles", ", ".join(released))

    async def close_database_handles_for_backup(self) -> bool:
        return (await self.release()).ok

    async def _checkpoint_and_close(self, name: str) -> None:
        try:
            handle = await self._engine.open_by_name(name)
        except Exception as exc:
            raise HandleReleaseFailed(f"open failed for {name}: {exc}") from exc

        checkpoint_error: Exception | None = None
        try:
            await handle.execute(CHECKPOINT_SQL)
        except Exception as exc:
            logger.warning("Checkpoint failed for %s: %s", name, exc)
            checkpoint_error = exc

        try:
            await handle.close()
        except Exception as exc:
            logger.warning("Close failed for %s: %s", name, exc)
            raise HandleReleaseFailed(f"close failed for {name}: {exc}") from exc

        if checkpoint_error is not None:
            raise HandleReleaseFailed(
                f"checkpoint failed for {name}: {checkpoint_error}"
            ) from checkpoint_error
