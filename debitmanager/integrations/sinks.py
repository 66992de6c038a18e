"""Capability interfaces for the remote and OS-level backup sinks.

These are black boxes to the subsystem: a cloud drive, the OS share sheet
and the local document picker. Only the calls the backup/restore flows need
are described here; concrete implementations live with the platform layer.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CloudSink(Protocol):
    """Cloud drive holding uploaded backups in a dedicated folder."""

    async def is_signed_in(self) -> bool: ...

    async def get_access_token(self) -> str: ...

    async def get_or_create_backup_folder(self, token: str) -> str: ...

    async def upload_file(self, token: str, local_path: Path, name: str, folder_id: str) -> None:
        ...

    async def list_files(self, token: str, folder_id: str) -> list[dict[str, Any]]:
        """Return ``[{"name", "createdTime", "id"}, ...]``."""
        ...

    async def download_latest_to(self, target_path: Path) -> bool:
        """Download the newest backup to *target_path*; False if there is none."""
        ...


@runtime_checkable
class ShareSink(Protocol):
    """The OS share sheet."""

    async def is_available(self) -> bool: ...

    async def share(self, path: Path, mime_type: str, title: str) -> None: ...


@runtime_checkable
class FilePicker(Protocol):
    """Local document picker. Returns None when the user cancels."""

    async def pick(self) -> Path | None: ...
