"""Workspace coordination failure contracts.

Coordinator components return typed outcomes on success and raise
``WorkspaceError`` subclasses on expected lock, registry, VCS, and command
failures. Programmer bugs raise normal exceptions. None of these are retried
inside the core; callers decide whether to retry, pick another workspace, or
abort.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

WorkspaceFailureCode = Literal[
    "already_locked",
    "stale_lock_declined",
    "io_failed",
    "dirty_workspace",
    "vcs_sync_failed",
    "update_command_failed",
    "registry_read_failed",
    "unexpected_state",
]


class WorkspaceError(Exception):
    """Expected coordination failure.

    Carries a stable ``code`` for callers and tests, the affected workspace
    path when there is one, and an optional recovery hint for the CLI.
    """

    def __init__(
        self,
        code: WorkspaceFailureCode,
        message: str,
        *,
        workspace_path: Path | None = None,
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.workspace_path = workspace_path
        self.recovery_hint = recovery_hint


class AlreadyLockedError(WorkspaceError):
    """A valid lock is held by another holder."""

    def __init__(self, workspace_path: Path, holder: str | None = None) -> None:
        detail = f" by {holder}" if holder else ""
        super().__init__(
            "already_locked",
            f"workspace {workspace_path} is already locked{detail}",
            workspace_path=workspace_path,
            recovery_hint="pick another workspace or wait for the holder to finish",
        )
        self.holder = holder


class StaleLockDeclinedError(WorkspaceError):
    """Reclamation of a stale lock was declined by the user or by policy."""

    def __init__(self, workspace_path: Path, reason: str = "declined") -> None:
        super().__init__(
            "stale_lock_declined",
            f"stale lock on {workspace_path} was not reclaimed ({reason})",
            workspace_path=workspace_path,
        )
        self.reason = reason


class LockIoError(WorkspaceError):
    """Filesystem failure while reading or writing a lock file."""

    def __init__(self, workspace_path: Path, detail: str) -> None:
        super().__init__(
            "io_failed",
            f"lock file I/O failed for {workspace_path}: {detail}",
            workspace_path=workspace_path,
        )


class RegistryIoError(WorkspaceError):
    """Filesystem failure while writing the registry."""

    def __init__(self, registry_path: Path | None, detail: str) -> None:
        location = f" {registry_path}" if registry_path else ""
        super().__init__("io_failed", f"registry write failed{location}: {detail}")
        self.registry_path = registry_path


class RegistryReadFailedError(WorkspaceError):
    """The durable registry could not be read or parsed."""

    def __init__(self, registry_path: Path | None, detail: str) -> None:
        location = f" {registry_path}" if registry_path else ""
        super().__init__(
            "registry_read_failed",
            f"registry unreadable{location}: {detail}",
            recovery_hint="fix or move the registry file, then rerun",
        )
        self.registry_path = registry_path


class DirtyWorkspaceError(WorkspaceError):
    """The working tree has uncommitted or untracked changes."""

    def __init__(self, workspace_path: Path, changes: list[str]) -> None:
        preview = ", ".join(changes[:5])
        more = f" (+{len(changes) - 5} more)" if len(changes) > 5 else ""
        super().__init__(
            "dirty_workspace",
            f"workspace {workspace_path} has local changes: {preview}{more}",
            workspace_path=workspace_path,
            recovery_hint="commit, stash, or discard the changes, then rerun",
        )
        self.changes = changes


class VcsSyncFailedError(WorkspaceError):
    """Fetch, checkout, or branch creation failed."""

    def __init__(self, workspace_path: Path, step: str, detail: str) -> None:
        super().__init__(
            "vcs_sync_failed",
            f"{step} failed in {workspace_path}: {detail}",
            workspace_path=workspace_path,
        )
        self.step = step


class UpdateCommandFailedError(WorkspaceError):
    """A configured update command without ``allowFailure`` exited non-zero."""

    def __init__(self, workspace_path: Path, title: str, exit_code: int) -> None:
        super().__init__(
            "update_command_failed",
            f"update command {title!r} failed with exit code {exit_code}",
            workspace_path=workspace_path,
        )
        self.title = title
        self.exit_code = exit_code


class UnexpectedStateError(WorkspaceError):
    """Inconsistent state, e.g. preparing without holding the lock."""

    def __init__(self, message: str, *, workspace_path: Path | None = None) -> None:
        super().__init__("unexpected_state", message, workspace_path=workspace_path)
