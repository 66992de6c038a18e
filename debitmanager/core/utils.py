"""Shared utility helpers for the core layer."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


def parse_utc_datetime(value: str | datetime) -> datetime:
    """Parse a datetime value, ensuring it is timezone-aware (UTC).

    Accepts an ISO-format string (a trailing ``Z`` is allowed) or a datetime
    instance. Naive datetimes are assumed to be UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def safe_json_loads(raw: str | None, default=None, context: str = ""):
    """Parse JSON with graceful fallback on decode errors.

    Returns *default* when *raw* is None or contains malformed JSON,
    logging a warning so a corrupted sidecar file is visible without
    crashing the caller.
    """
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Corrupt JSON in %s: %r", context or "unknown field", raw[:120])
        return default


def local_timestamp(when: datetime | None = None) -> str:
    """Filesystem-safe local timestamp: ``YYYY-MM-DDTHH-mm-ss±HHMM``.

    Naive or missing datetimes are interpreted in the local timezone.
    """
    if when is None:
        when = datetime.now().astimezone()
    elif when.tzinfo is None:
        when = when.astimezone()

    offset = when.utcoffset()
    minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{when.strftime('%Y-%m-%dT%H-%M-%S')}{sign}{hours:02d}{mins:02d}"


def format_relative_time(when: datetime, now: datetime | None = None) -> str:
    """Human-friendly age of *when*, as shown next to the last backup."""
    when = parse_utc_datetime(when)
    now = parse_utc_datetime(now) if now is not None else datetime.now(UTC)
    seconds = int((now - when).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} min ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    if seconds < 2_592_000:
        return f"{seconds // 86400} days ago"
    return when.astimezone().date().isoformat()
