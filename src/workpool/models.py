"""Pydantic models for lock records, registry entries, and configuration.

On-disk JSON uses camelCase keys; Python attributes are snake_case and the
models accept either form when validating.

Example:
    >>> record = LockRecord.model_validate(
    ...     {
    ...         "pid": 12345,
    ...         "command": "agent --workspace task-123",
    ...         "startedAt": "2025-01-22T10:30:00Z",
    ...         "hostname": "dev-machine",
    ...         "version": 1,
    ...     }
    ... )
    >>> record.lock_payload()["startedAt"]
    '2025-01-22T10:30:00Z'
"""

from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

LOCK_SCHEMA_VERSION = 1
SUPPORTED_LOCK_VERSIONS = frozenset({LOCK_SCHEMA_VERSION})
DEFAULT_STALE_LOCK_HOURS = 24.0

LockType = Literal["pid", "persistent"]
LOCK_TYPE_VALUES = ("pid", "persistent")


def format_timestamp(value: dt.datetime) -> str:
    """Render a datetime as a second-precision UTC ``Z`` timestamp.

    Example:
        >>> format_timestamp(dt.datetime(2025, 1, 22, 10, 30, tzinfo=dt.timezone.utc))
        '2025-01-22T10:30:00Z'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    value = value.astimezone(dt.timezone.utc).replace(microsecond=0)
    return value.isoformat().replace("+00:00", "Z")


class LockRecord(BaseModel):
    """Authoritative mutual-exclusion token stored in a workspace lock file.

    Attributes:
        pid: Process ID of the holder.
        command: Free-text description of the holding process.
        started_at: Acquisition time (UTC).
        hostname: Host the holder runs on.
        version: Lock file schema version.
        type: ``pid`` locks die with their process; ``persistent`` locks
            are taken explicitly and outlive the process that wrote them.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pid: int
    command: str = ""
    started_at: dt.datetime = Field(alias="startedAt")
    hostname: str
    version: int = LOCK_SCHEMA_VERSION
    type: LockType = "pid"

    @field_validator("started_at", mode="after")
    @classmethod
    def ensure_utc(cls, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)

    @field_serializer("started_at")
    def serialize_started_at(self, value: dt.datetime) -> str:
        return format_timestamp(value)

    def lock_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)

    def describe(self) -> str:
        return f"PID {self.pid} on {self.hostname} ({self.command or 'unknown command'})"


class LockedBySummary(BaseModel):
    """Advisory copy of a lock holder cached on a registry entry."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    pid: int | None = None
    started_at: str = Field(alias="startedAt")
    hostname: str
    command: str | None = None
    type: LockType = "pid"

    @classmethod
    def from_record(cls, record: LockRecord) -> LockedBySummary:
        return cls(
            pid=record.pid,
            started_at=format_timestamp(record.started_at),
            hostname=record.hostname,
            command=record.command,
            type=record.type,
        )


class WorkspaceEntry(BaseModel):
    """One reusable working copy tracked in the registry.

    Attributes:
        path: Absolute workspace path; unique across the registry.
        repository_id: Identity of the owning repository.
        task_id: Last task or branch the workspace was used for.
        primary: Primary workspaces are never auto-selected or reused.
        locked_by: Cached lock holder; advisory only.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    path: str
    repository_id: str = Field(alias="repositoryId")
    task_id: str = Field(default="", alias="taskId")
    primary: bool = False
    locked_by: LockedBySummary | None = Field(default=None, alias="lockedBy")
    branch: str | None = None
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    name: str | None = None
    description: str | None = None
    plan_id: str | None = Field(default=None, alias="planId")
    plan_title: str | None = Field(default=None, alias="planTitle")
    issue_urls: list[str] | None = Field(default=None, alias="issueUrls")

    @property
    def workspace_path(self) -> Path:
        return Path(self.path)

    def registry_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


class WorkspaceMetadataPatch(BaseModel):
    """Partial metadata update.

    ``None`` leaves a field unchanged; an empty string (or empty list for
    ``issue_urls``) clears it.
    """

    model_config = ConfigDict(populate_by_name=True)

    task_id: str | None = Field(default=None, alias="taskId")
    branch: str | None = None
    name: str | None = None
    description: str | None = None
    plan_id: str | None = Field(default=None, alias="planId")
    plan_title: str | None = Field(default=None, alias="planTitle")
    issue_urls: list[str] | None = Field(default=None, alias="issueUrls")


class UpdateCommand(BaseModel):
    """A post-sync command run against a prepared workspace.

    Example:
        >>> UpdateCommand.model_validate(
        ...     {"title": "install", "command": "pnpm install", "allowFailure": True}
        ... ).allow_failure
        True
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: str
    command: str
    cwd: str | None = Field(
        default=None, validation_alias=AliasChoices("cwd", "workingDirectory")
    )
    env: dict[str, str] = Field(default_factory=dict)
    allow_failure: bool = Field(default=False, alias="allowFailure")
    hide_output_on_success: bool = Field(default=False, alias="hideOutputOnSuccess")
    timeout_seconds: float | None = Field(default=None, alias="timeoutSeconds", gt=0)

    @field_validator("env", mode="before")
    @classmethod
    def normalize_env(cls, value: object) -> object:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(key): str(item) for key, item in value.items()}
        return value

    @field_validator("title", "command", mode="after")
    @classmethod
    def require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


class WorkspaceSection(BaseModel):
    """Workspace coordination settings."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    update_commands: list[UpdateCommand] = Field(
        default_factory=list, alias="updateCommands"
    )
    stale_lock_hours: float = Field(
        default=DEFAULT_STALE_LOCK_HOURS, alias="staleLockHours", gt=0
    )
    registry_path: str | None = Field(default=None, alias="registryPath")
    clone_location: str | None = Field(default=None, alias="cloneLocation")
    create_branch: bool = Field(default=False, alias="createBranch")
    interactive: bool | None = None
    prompt_timeout_seconds: float | None = Field(
        default=60.0, alias="promptTimeoutSeconds", gt=0
    )

    @property
    def stale_lock_threshold(self) -> dt.timedelta:
        return dt.timedelta(hours=self.stale_lock_hours)


class GitSection(BaseModel):
    """Git configuration.

    Attributes:
        path: Git executable path (default ``git``).

    Example:
        >>> GitSection(path="  ").path
        'git'
    """

    model_config = ConfigDict(extra="allow")

    path: str = "git"

    @field_validator("path", mode="before")
    @classmethod
    def normalize_path(cls, value: object) -> object:
        if value is None:
            return "git"
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or "git"
        return value


class WorkpoolConfig(BaseModel):
    """Top-level configuration file model."""

    model_config = ConfigDict(extra="allow")

    workspace: WorkspaceSection = Field(default_factory=WorkspaceSection)
    git: GitSection = Field(default_factory=GitSection)
