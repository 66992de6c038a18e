"""Shared constants: single source of truth for values used across modules."""

# Database file naming
DATABASE_NAME = "debitmanager"
CANONICAL_SUFFIX = ".db"
SIDECAR_SUFFIXES: tuple[str, ...] = ("-wal", "-shm")
DATABASE_VERSION = 2

# Layout under the document root
SQLITE_DIRNAME = "SQLite"
BACKUP_DIRNAME = "backups"
META_FILENAME = "backup_meta.json"
DEFAULT_DOCUMENT_ROOT = "~/.debitmanager"

# Restore staging
RESTORE_TMP_SUFFIX = ".restore.tmp"
ROLLBACK_TMP_SUFFIX = ".rollback.tmp"

# Handle release / remount
HANDLE_SETTLE_DELAY_SECONDS = 0.15
REMOUNT_DEBOUNCE_SECONDS = 1.0
CHECKPOINT_SQL = "PRAGMA wal_checkpoint(TRUNCATE)"

# Sinks
BACKUP_MIME_TYPE = "application/octet-stream"
SHARE_DIALOG_TITLE = "Save Backup to Cloud"
HTTP_UPLOAD_TIMEOUT_SECONDS = 60.0
