"""Core domain models for the backup/restore subsystem."""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

# ── Enums ──────────────────────────────────────────────────────────────


class StepOutcome(enum.StrEnum):
    SUCCEEDED = "succeeded"
    FAILED_NONFATAL = "failed_nonfatal"
    FAILED_FATAL = "failed_fatal"


class RestoreState(enum.StrEnum):
    IDLE = "idle"
    RELEASING_HANDLES = "releasing_handles"
    SNAPSHOTTING = "snapshotting"
    STAGING = "staging"
    SWAPPING = "swapping"
    REOPENING = "reopening"
    DONE = "done"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class RollbackStatus(enum.StrEnum):
    NOT_NEEDED = "not_needed"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"


# ── Step results ───────────────────────────────────────────────────────


class StepResult(BaseModel):
    """Outcome of a single protocol step.

    Best-effort steps report ``failed_nonfatal`` instead of raising, so
    callers (and tests) can tell a skipped safety net from a clean run.
    """

    model_config = {"frozen": True}

    step: str
    outcome: StepOutcome
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == StepOutcome.SUCCEEDED

    @classmethod
    def succeeded(cls, step: str, detail: str = "") -> StepResult:
        return cls(step=step, outcome=StepOutcome.SUCCEEDED, detail=detail)

    @classmethod
    def nonfatal(cls, step: str, detail: str) -> StepResult:
        return cls(step=step, outcome=StepOutcome.FAILED_NONFATAL, detail=detail)

    @classmethod
    def fatal(cls, step: str, detail: str) -> StepResult:
        return cls(step=step, outcome=StepOutcome.FAILED_FATAL, detail=detail)


# ── Domain Models ──────────────────────────────────────────────────────


class BackupArtifact(BaseModel):
    """An immutable point-in-time copy of the database file."""

    model_config = {"frozen": True}

    path: Path
    source: Path | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    sidecars: list[Path] = Field(default_factory=list)
    size: int = 0

    @property
    def name(self) -> str:
        return self.path.name


class BackupMetadata(BaseModel):
    """Persisted record of the most recent successful local backup."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    last_backup: datetime = Field(alias="lastBackupISO")

    @field_validator("last_backup")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=UTC)
        return v

    @field_serializer("last_backup")
    def serialize_instant(self, v: datetime) -> str:
        return v.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class BackupNowResult(BaseModel):
    """What the combined "backup now" action hands back to the UI."""

    model_config = {"frozen": True}

    path: Path
    uploaded_to_generic_sink: bool = False
    shared_via_os: bool = False
    uploaded_to_cloud: bool = False

    @property
    def message(self) -> str:
        if self.uploaded_to_cloud:
            return "Backup uploaded to cloud drive successfully."
        if self.uploaded_to_generic_sink:
            return f"Backup saved locally at {self.path} and uploaded."
        if self.shared_via_os:
            return f"Backup saved locally at {self.path} and shared."
        return f"Backup saved locally at {self.path}"


class RestoreReport(BaseModel):
    """Trace of one restore run through the state machine."""

    state: RestoreState = RestoreState.IDLE
    target: Path | None = None
    pre_restore: BackupArtifact | None = None
    rollback: RollbackStatus = RollbackStatus.NOT_NEEDED
    rollback_detail: str = ""
    remount_acknowledged: bool | None = None
    steps: list[StepResult] = Field(default_factory=list)

    def record(self, result: StepResult) -> StepResult:
        self.steps.append(result)
        return result


class CloudFile(BaseModel):
    """A backup file listed by the cloud sink."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    created_time: datetime | None = Field(default=None, alias="createdTime")


class UploadConfig(BaseModel):
    """Generic HTTP upload endpoint; unconfigured when ``upload_url`` is empty."""

    model_config = {"frozen": True}

    upload_url: str | None = None
    auth_token: str | None = None

    @field_validator("upload_url", "auth_token")
    @classmethod
    def blank_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def configured(self) -> bool:
        return bool(self.upload_url)
