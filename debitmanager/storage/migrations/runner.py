"""SQLite migration runner with version tracking.

Migrations are numbered SQL files in this directory (e.g. 001_debtors.sql).
The number is the schema version the file produces; the applied version is
tracked in ``PRAGMA user_version``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from debitmanager.core.constants import DATABASE_VERSION
from debitmanager.storage.sqlite import Database

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent


def migration_version(path: Path) -> int:
    return int(path.name.split("_", 1)[0])


def get_pending(db: Database, target: int = DATABASE_VERSION) -> list[Path]:
    """Return sorted list of migration files above the current schema version."""
    current = db.schema_version()
    files = sorted(MIGRATIONS_DIR.glob("*.sql"), key=migration_version)
    return [f for f in files if current < migration_version(f) <= target]


def run_all(db: Database, target: int = DATABASE_VERSION) -> list[str]:
    """Apply all pending migrations. Returns list of applied names.

    Each file runs in its own transaction together with the version bump,
    so a failed migration leaves the previous version recorded.
    """
    applied_names: list[str] = []
    for migration_file in get_pending(db, target):
        version = migration_version(migration_file)
        sql = migration_file.read_text(encoding="utf-8")
        try:
            db.conn.executescript(
                f"BEGIN;\n{sql}\nPRAGMA user_version = {version};\nCOMMIT;"
            )
        except Exception:
            db.conn.rollback()
            logger.exception("Migration %s failed", migration_file.name)
            raise RuntimeError(f"Migration {migration_file.name} failed") from None
        logger.info("Applied migration %s (schema version %d)", migration_file.name, version)
        applied_names.append(migration_file.name)
    return applied_names


def ensure_schema(db: Database) -> None:
    """Ensure all migrations are applied. Call whenever a connection is (re)opened."""
    run_all(db)
