"""Bring a locked workspace to a known-good state.

Preparation runs strictly after lock acquisition: every entry point takes the
``LockHandle`` for the workspace and refuses to touch anything without it.
The steps are a clean-tree check, a VCS sync to the base ref (or the default
branch), an optional task branch, and the configured update commands. The
lock is never released here; that stays with whoever acquired it.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from . import exec as exec_util
from . import log
from .errors import (
    DirtyWorkspaceError,
    UnexpectedStateError,
    UpdateCommandFailedError,
    VcsSyncFailedError,
)
from .locks import LockHandle
from .models import UpdateCommand, WorkspaceEntry
from .vcs import GitVcs, Vcs

ALLOW_OFFLINE_ENV_VAR = "WORKPOOL_ALLOW_OFFLINE"
MISSING_SHELL_RETURNCODE = 127


@dataclass(frozen=True)
class CommandOutcome:
    title: str
    exit_code: int
    allowed_failure: bool = False
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class PrepareResult:
    """What preparation did to the workspace."""

    entry: WorkspaceEntry
    synced_ref: str
    fetched: bool
    branch: str | None = None
    commands: tuple[CommandOutcome, ...] = field(default_factory=tuple)


def offline_allowed() -> bool:
    value = os.environ.get(ALLOW_OFFLINE_ENV_VAR, "").strip().lower()
    return value in {"1", "true", "yes"}


def _require_lock(handle: LockHandle, entry: WorkspaceEntry) -> Path:
    path = entry.workspace_path
    if handle.released:
        raise UnexpectedStateError(
            f"lock on {handle.workspace_path} was released before preparing",
            workspace_path=path,
        )
    if not handle.holds(path):
        raise UnexpectedStateError(
            f"lock handle guards {handle.workspace_path}, not {path}",
            workspace_path=path,
        )
    return path


def _sync(vcs: Vcs, path: Path, base_ref: str | None) -> tuple[str, bool]:
    fetched = False
    if vcs.has_remote(path):
        try:
            vcs.fetch(path)
            fetched = True
        except VcsSyncFailedError as exc:
            if not offline_allowed():
                raise
            log.warning(
                f"{exc}; continuing offline ({ALLOW_OFFLINE_ENV_VAR} is set)", workspace=path
            )
    else:
        log.warning("no remote configured; skipping fetch", workspace=path)

    ref = base_ref.strip() if base_ref else ""
    if not ref:
        ref = vcs.default_branch(path) or ""
    if not ref:
        raise VcsSyncFailedError(path, "resolve default branch", "no base ref could be determined")
    vcs.checkout(path, ref)
    log.debug(f"synced to {ref}", workspace=path)
    return ref, fetched


def run_update_commands(
    path: Path,
    commands: Sequence[UpdateCommand],
    *,
    task_id: str = "",
    runner: exec_util.CommandRunner | None = None,
) -> tuple[CommandOutcome, ...]:
    """Run ``commands`` in order inside ``path``.

    Raises:
        UpdateCommandFailedError: A command without ``allowFailure`` failed;
            the remaining commands are not run.
    """
    outcomes: list[CommandOutcome] = []
    for command in commands:
        cwd = path
        if command.cwd:
            cwd = Path(command.cwd).expanduser()
            if not cwd.is_absolute():
                cwd = path / cwd
        log.info(f"running update command: {command.title}", workspace=path)
        result = exec_util.run_with_runner(
            exec_util.CommandRequest(
                argv=exec_util.shell_argv(command.command),
                cwd=cwd,
                env=exec_util.workspace_env(path, task_id, command.env),
                capture_output=command.hide_output_on_success,
                timeout_seconds=command.timeout_seconds,
            ),
            runner=runner,
        )
        if result is None:
            exit_code, timed_out = MISSING_SHELL_RETURNCODE, False
        else:
            exit_code, timed_out = result.returncode, result.timed_out
        outcome = CommandOutcome(
            title=command.title,
            exit_code=exit_code,
            allowed_failure=command.allow_failure,
            timed_out=timed_out,
        )
        outcomes.append(outcome)
        if outcome.succeeded:
            log.success(f"{command.title} finished", workspace=path)
            continue
        if command.hide_output_on_success and result is not None:
            for text in (result.stdout, result.stderr):
                if text.strip():
                    log.error(text.rstrip())
        detail = "timed out" if timed_out else f"exit code {exit_code}"
        if command.allow_failure:
            log.warning(
                f"update command {command.title!r} failed ({detail}); continuing",
                workspace=path,
            )
            continue
        raise UpdateCommandFailedError(path, command.title, exit_code)
    return tuple(outcomes)


def prepare_workspace(
    handle: LockHandle,
    entry: WorkspaceEntry,
    base_ref: str | None = None,
    update_commands: Sequence[UpdateCommand] = (),
    *,
    task_id: str | None = None,
    branch_name: str | None = None,
    vcs: Vcs | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> PrepareResult:
    """Prepare a locked workspace for a new task.

    Args:
        handle: Live lock handle for ``entry.path``.
        entry: Registry entry of the workspace.
        base_ref: Ref to sync to; the default branch when omitted.
        update_commands: Commands run after the sync.
        task_id: Exposed to update commands as ``WORKPOOL_TASK_ID``.
        branch_name: Create this branch (suffixed when taken) after syncing.
        vcs: VCS adapter; git by default.
        runner: Command runner for update commands.

    Raises:
        UnexpectedStateError: ``handle`` is released or guards another path.
        DirtyWorkspaceError: The tree has uncommitted or untracked changes.
        VcsSyncFailedError: Fetch, checkout, or branch creation failed.
        UpdateCommandFailedError: A required update command failed.
    """
    path = _require_lock(handle, entry)
    active_vcs = vcs or GitVcs()

    changes = active_vcs.status(path)
    if changes:
        raise DirtyWorkspaceError(path, changes)

    synced_ref, fetched = _sync(active_vcs, path, base_ref)

    branch: str | None = None
    if branch_name and branch_name.strip():
        branch = active_vcs.create_branch(path, branch_name.strip())
        log.info(f"created branch {branch}", workspace=path)

    outcomes = run_update_commands(
        path,
        update_commands,
        task_id=task_id if task_id is not None else entry.task_id,
        runner=runner,
    )
    return PrepareResult(
        entry=entry,
        synced_ref=synced_ref,
        fetched=fetched,
        branch=branch,
        commands=outcomes,
    )
