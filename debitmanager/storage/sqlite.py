"""SQLite storage layer -- the UI-held connection and the engine capability.

``Database`` is the long-lived connection the UI layer owns. ``SQLiteEngine``
is the ``DatabaseEngine`` capability the handle-release protocol uses to
open short-lived probing handles by filename.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from debitmanager.core.constants import CHECKPOINT_SQL

logger = logging.getLogger(__name__)


class Database:
    """Manages a SQLite connection with WAL mode and foreign keys."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._owner_thread = threading.get_ident()

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def conn(self) -> sqlite3.Connection:
        """The open connection. Raises RuntimeError once closed."""
        self._check_thread()
        if self._conn is None:
            raise RuntimeError(f"Access to closed database: {self.db_path}")
        return self._conn

    def _check_thread(self) -> None:
        """Raise RuntimeError if called from a thread other than the owner."""
        if threading.get_ident() != self._owner_thread:
            raise RuntimeError(
                "Database accessed from a different thread than the one that created it"
            )

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """Yield a cursor inside an explicit transaction."""
        conn = self.conn
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Cursor:
        """Execute a single SQL statement and commit."""
        conn = self.conn
        cursor = conn.execute(sql, params)
        conn.commit()
        return cursor

    def fetchone(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Row | None:
        """Execute SQL and return first row or None."""
        return self.conn.execute(sql, params).fetchone()

    def fetchall(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[sqlite3.Row]:
        """Execute SQL and return all rows."""
        return self.conn.execute(sql, params).fetchall()

    def schema_version(self) -> int:
        row = self.fetchone("PRAGMA user_version")
        return int(row[0]) if row else 0

    def status(self) -> dict[str, Any]:
        """Light PRAGMA health check: schema version and journal mode."""
        mode = self.fetchone("PRAGMA journal_mode")
        return {
            "user_version": self.schema_version(),
            "journal_mode": mode[0] if mode else "unknown",
        }

    def checkpoint(self) -> tuple[int, int, int]:
        """Force all write-ahead-log contents into the main file."""
        row = self.conn.execute(CHECKPOINT_SQL).fetchone()
        return tuple(row) if row else (0, 0, 0)

    def close(self) -> None:
        """Close the database connection. Safe to call twice."""
        if self._conn is None:
            return
        self._check_thread()
        self._conn.close()
        self._conn = None


# ── Engine capability ─────────────────────────────────────────────────


@runtime_checkable
class DatabaseHandle(Protocol):
    """A short-lived handle opened by name."""

    async def execute(self, sql: str) -> None: ...

    async def close(self) -> None: ...

    async def current_schema_version(self) -> int: ...


@runtime_checkable
class DatabaseEngine(Protocol):
    """Opens database handles by filename inside the SQLite directory."""

    async def open_by_name(self, name: str) -> DatabaseHandle: ...


class SQLiteHandle:
    def __init__(self, conn: sqlite3.Connection, name: str) -> None:
        self._conn = conn
        self.name = name

    async def execute(self, sql: str) -> None:
        await asyncio.to_thread(self._execute, sql)

    def _execute(self, sql: str) -> None:
        self._conn.execute(sql).fetchall()

    async def current_schema_version(self) -> int:
        row = await asyncio.to_thread(
            lambda: self._conn.execute("PRAGMA user_version").fetchone()
        )
        return int(row[0]) if row else 0

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


class SQLiteEngine:
    """``DatabaseEngine`` backed by the stdlib sqlite3 module.

    Only existing files are opened (``mode=rw``) so that probing a
    candidate name never creates an empty database under that name.
    """

    def __init__(self, sqlite_dir: Path) -> None:
        self.sqlite_dir = Path(sqlite_dir)

    async def open_by_name(self, name: str) -> SQLiteHandle:
        path = self.sqlite_dir / name
        conn = await asyncio.to_thread(self._connect, path)
        return SQLiteHandle(conn, name)

    @staticmethod
    def _connect(path: Path) -> sqlite3.Connection:
        return sqlite3.connect(
            f"{path.resolve().as_uri()}?mode=rw",
            uri=True,
            check_same_thread=False,
        )
