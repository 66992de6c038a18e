"""Generic HTTP upload sink: PUT the raw backup bytes to a configured URL."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import httpx

from debitmanager.core.constants import BACKUP_MIME_TYPE, HTTP_UPLOAD_TIMEOUT_SECONDS
from debitmanager.core.errors import SinkUnavailable
from debitmanager.core.models import UploadConfig

logger = logging.getLogger(__name__)

SINK_NAME = "http upload"


def load_upload_config() -> UploadConfig:
    """Read the upload endpoint from ``DM_BACKUP_UPLOAD_URL`` / ``DM_BACKUP_AUTH_TOKEN``."""
    return UploadConfig(
        upload_url=os.environ.get("DM_BACKUP_UPLOAD_URL"),
        auth_token=os.environ.get("DM_BACKUP_AUTH_TOKEN"),
    )


class HttpUploadSink:
    def __init__(
        self,
        config: UploadConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = HTTP_UPLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self.config = config
        self._transport = transport
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return self.config.configured

    async def upload(self, path: Path) -> None:
        """Upload *path*. Raises ``SinkUnavailable`` unless the server answers 2xx."""
        if not self.config.upload_url:
            raise SinkUnavailable(SINK_NAME, "no upload URL configured")

        headers = {"Content-Type": BACKUP_MIME_TYPE}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"

        try:
            content = await asyncio.to_thread(Path(path).read_bytes)
        except OSError as exc:
            raise SinkUnavailable(SINK_NAME, f"cannot read {path}: {exc}") from exc

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            ) as client:
                response = await client.put(
                    self.config.upload_url, content=content, headers=headers
                )
        except httpx.HTTPError as exc:
            raise SinkUnavailable(SINK_NAME, str(exc)) from exc

        if not response.is_success:
            raise SinkUnavailable(SINK_NAME, f"upload failed: HTTP {response.status_code}")
        logger.info("Uploaded %s (%d bytes) to %s", path, len(content), self.config.upload_url)
