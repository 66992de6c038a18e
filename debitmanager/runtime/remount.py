"""Remount coordinator: request/acknowledge handshake with the UI-held connection.

The UI layer registers one callback at start-up. ``request_remount`` invokes
it synchronously (debounced); the UI tears down its connection, opens a new
one, migrates it and calls ``notify_remount_complete``. Waiters blocked in
``await_remount_complete`` are released by that acknowledgement.

No timeout is enforced here: callers that need a bounded wait wrap
``await_remount_complete`` in ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from debitmanager.core.constants import REMOUNT_DEBOUNCE_SECONDS

logger = logging.getLogger(__name__)

RemountCallback = Callable[[], None]


class RemountCoordinator:
    """Owns the single remount callback and the debounce timestamp.

    Constructed once per process and passed explicitly to whoever needs it.
    """

    def __init__(
        self,
        debounce_seconds: float = REMOUNT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._debounce = debounce_seconds
        self._clock = clock
        self._callback: RemountCallback | None = None
        self._last_accepted: float | None = None
        self._pending: asyncio.Future[bool] | None = None
        self._last_result = True

    @property
    def has_callback(self) -> bool:
        return self._callback is not None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def debounce_remaining(self) -> float:
        """Seconds until a new request would be accepted."""
        if self._last_accepted is None:
            return 0.0
        return max(0.0, self._debounce - (self._clock() - self._last_accepted))

    def register(self, callback: RemountCallback) -> None:
        """Register the UI remount callback, replacing any previous one."""
        if self._callback is not None:
            logger.debug("Replacing registered remount callback")
        self._callback = callback

    def unregister(self, callback: RemountCallback | None = None) -> None:
        # bound methods compare equal, never identical
        if callback is None or self._callback == callback:
            self._callback = None

    def request_remount(self) -> bool:
        """Ask the UI to recreate its connection.

        Returns False when debounced (a request was accepted less than the
        debounce window ago) or when no callback is registered.
        """
        now = self._clock()
        if self._last_accepted is not None and now - self._last_accepted < self._debounce:
            logger.info("Remount request debounced")
            return False

        if self._callback is None:
            logger.warning("Remount requested but no remount callback is registered")
            return False

        self._last_accepted = now
        if not self.pending:
            self._pending = asyncio.get_running_loop().create_future()

        try:
            self._callback()
        except Exception:
            logger.exception("Remount callback failed")
            self.notify_remount_complete(False)
            return False

        logger.info("Requested connection remount")
        return True

    async def await_remount_complete(self) -> bool:
        """Wait for the acknowledgement of the outstanding request.

        Returns immediately with the last result when nothing is outstanding.
        """
        if self._pending is None:
            return self._last_result
        return await asyncio.shield(self._pending)

    def notify_remount_complete(self, ok: bool = True) -> None:
        """Called by the UI once its fresh connection is open and migrated."""
        self._last_result = ok
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(ok)
        logger.info("Connection remount acknowledged (ok=%s)", ok)

    def close(self) -> None:
        """Tear down: drop the callback and release any waiter with False."""
        self._callback = None
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(False)
        self._pending = None
