"""CLI entry point for Debit Manager backups."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import click

from debitmanager.core.constants import DEFAULT_DOCUMENT_ROOT
from debitmanager.core.errors import BackupError, DatabaseNotFound, RestoreFailed
from debitmanager.core.models import UploadConfig
from debitmanager.core.utils import format_relative_time

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _services(ctx: click.Context) -> AsyncIterator:
    """Start the connection provider and build the backup service around it."""
    from debitmanager.core.services.backups import build_backup_service
    from debitmanager.integrations.http_sink import HttpUploadSink
    from debitmanager.runtime.provider import ConnectionProvider
    from debitmanager.runtime.remount import RemountCoordinator

    layout = ctx.obj["layout"]
    coordinator = RemountCoordinator()
    provider = ConnectionProvider(layout, coordinator)
    provider.start()
    try:
        service = build_backup_service(
            layout,
            coordinator,
            live=provider,
            http=HttpUploadSink(ctx.obj["upload"]),
        )
        yield service
    finally:
        provider.close()
        coordinator.close()


@click.group()
@click.option(
    "--root",
    default=DEFAULT_DOCUMENT_ROOT,
    envvar="DM_DOCUMENT_ROOT",
    help="Application document root holding SQLite/ and backups/.",
)
@click.option("--upload-url", default=None, envvar="DM_BACKUP_UPLOAD_URL", help="HTTP PUT target.")
@click.option("--auth-token", default=None, envvar="DM_BACKUP_AUTH_TOKEN", help="Bearer token.")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    root: str,
    upload_url: str | None,
    auth_token: str | None,
    verbose: bool,
) -> None:
    """Debit Manager -- database backup and restore."""
    from debitmanager.storage.layout import StorageLayout

    debug = verbose or os.environ.get("DM_DB_DEBUG", "").lower() == "true"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["layout"] = StorageLayout(Path(root).expanduser())
    ctx.obj["upload"] = UploadConfig(upload_url=upload_url, auth_token=auth_token)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Migrate legacy filenames and create/upgrade the database schema."""

    async def _run() -> None:
        async with _services(ctx):
            pass

    asyncio.run(_run())
    click.echo(f"Database ready: {ctx.obj['layout'].canonical_path}")


@cli.command()
@click.option("--local-only", is_flag=True, help="Skip the upload/share chain.")
@click.pass_context
def backup(ctx: click.Context, local_only: bool) -> None:
    """Back up the database now."""

    async def _run():
        async with _services(ctx) as service:
            if local_only:
                return await service.backup()
            return await service.backup_now()

    try:
        result = asyncio.run(_run())
    except BackupError as exc:
        click.echo(f"Backup failed: {exc}", err=True)
        raise SystemExit(1) from None

    if local_only:
        click.echo(f"Backup saved locally at {result.path}")
    else:
        click.echo(result.message)


@cli.command()
@click.argument("backup_path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def restore(ctx: click.Context, backup_path: Path) -> None:
    """Restore the database from BACKUP_PATH."""

    async def _run():
        async with _services(ctx) as service:
            return await service.restore_from_file(backup_path)

    try:
        report = asyncio.run(_run())
    except RestoreFailed as exc:
        click.echo(exc.user_message, err=True)
        raise SystemExit(1) from None
    except BackupError as exc:
        click.echo(f"Restore failed: {exc}", err=True)
        raise SystemExit(1) from None

    if report.pre_restore is not None:
        click.echo(f"Previous database saved to: {report.pre_restore.path}")
    click.echo(f"Database restored from: {backup_path}")


@cli.command(name="backups")
@click.pass_context
def list_backups(ctx: click.Context) -> None:
    """List local backups, newest first."""
    from debitmanager.storage.handles import HandleReleaser
    from debitmanager.storage.snapshot import SnapshotEngine
    from debitmanager.storage.sqlite import SQLiteEngine

    layout = ctx.obj["layout"]
    snapshots = SnapshotEngine(layout, HandleReleaser(SQLiteEngine(layout.sqlite_dir), layout))
    artifacts = snapshots.list_backups()
    if not artifacts:
        click.echo("No local backups.")
        return
    for artifact in artifacts:
        extra = f" (+{len(artifact.sidecars)} sidecar)" if artifact.sidecars else ""
        click.echo(
            f"{artifact.name}  {artifact.size} bytes  "
            f"{format_relative_time(artifact.created_at)}{extra}"
        )


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the active database file and the last backup time."""
    from debitmanager.storage.layout import list_sqlite_files, resolve_database_path
    from debitmanager.storage.metadata import BackupMetadataStore

    layout = ctx.obj["layout"]
    try:
        db_path = str(resolve_database_path(layout))
    except DatabaseNotFound:
        db_path = "(not found)"

    last = BackupMetadataStore(layout.meta_file).last_backup()
    files = list_sqlite_files(layout)

    click.echo(f"Database:     {db_path}")
    click.echo(f"Last backup:  {format_relative_time(last) if last else 'never'}")
    click.echo(f"Backups dir:  {layout.backup_dir}")
    click.echo(f"SQLite files: {', '.join(files) if files else '(none)'}")
