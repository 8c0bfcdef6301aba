"""Implementation for the ``workpool run`` command."""

from __future__ import annotations

import shlex
from pathlib import Path

from .. import exec as exec_util
from .. import io, log, project
from ..coordinator import AcquiredWorkspace, WorkspaceCoordinator
from ..errors import WorkspaceError
from ..locks import LockHolder

RETRY = "retry"
CHOOSE_ANOTHER = "choose another workspace"
ABORT = "abort"
RECOVERY_CHOICES = (RETRY, CHOOSE_ANOTHER, ABORT)


def _ask_recovery(exc: WorkspaceError, timeout_seconds: float | None) -> str:
    log.error(str(exc))
    if exc.recovery_hint:
        log.info(f"hint: {exc.recovery_hint}")
    try:
        return io.select(
            "Preparation failed. What next?",
            RECOVERY_CHOICES,
            default=ABORT,
            timeout_seconds=timeout_seconds,
        )
    except io.PromptTimeout:
        return ABORT


def _prepare(
    coordinator: WorkspaceCoordinator,
    acquired: AcquiredWorkspace,
    *,
    base_ref: str | None,
    task_id: str,
    branch_name: str | None,
    interactive: bool,
) -> bool:
    """Prepare the acquired workspace; ``False`` means try another one."""
    while True:
        try:
            coordinator.prepare(
                acquired.handle, base_ref, task_id=task_id, branch_name=branch_name
            )
            return True
        except WorkspaceError as exc:
            if not interactive:
                project.fail(exc)
            choice = _ask_recovery(exc, coordinator.prompt_timeout_seconds)
            if choice == RETRY:
                continue
            if choice == CHOOSE_ANOTHER:
                return False
            project.fail(exc)


def run_in_workspace(args: object) -> int:
    """Run a command in a prepared workspace and return its exit code.

    Selects a reusable workspace (or creates one), locks it, prepares it,
    runs the command inside it, and releases the lock.

    Args:
        args: CLI argument object with ``command``, ``base``, ``task``,
            ``non_interactive`` and ``new`` attributes.

    Example:
        $ workpool run --task fix-login -- pytest -q
    """
    command = list(getattr(args, "command", None) or [])
    if not command:
        io.die("no command given; use: workpool run [options] -- <cmd...>")
    base_ref = getattr(args, "base", None)
    task_id = getattr(args, "task", None) or project.default_task_id()
    prefer_new = bool(getattr(args, "new", False))

    ctx = project.resolve_project()
    interactive = project.resolve_interactive(
        ctx, bool(getattr(args, "non_interactive", False))
    )
    coordinator = project.build_coordinator(ctx, interactive=interactive, base_ref=base_ref)
    branch_name = task_id if ctx.config.workspace.create_branch else None
    holder = LockHolder.current(f"workpool run {shlex.join(command)}")

    excluded: set[Path] = set()
    while True:
        try:
            acquired = coordinator.select_or_create(
                ctx.repository_id,
                task_id,
                holder=holder,
                exclude=excluded,
                prefer_new=prefer_new,
            )
        except WorkspaceError as exc:
            project.fail(exc)
            return 1
        try:
            if acquired.cleared_stale_lock:
                log.warning(f"reclaimed a stale lock on {acquired.path}")
            ready = _prepare(
                coordinator,
                acquired,
                base_ref=base_ref,
                task_id=task_id,
                branch_name=branch_name,
                interactive=interactive,
            )
            if not ready:
                excluded.add(acquired.path)
                continue
            log.info(f"running {shlex.join(command)}", workspace=acquired.path)
            result = exec_util.run_with_runner(
                exec_util.CommandRequest(
                    argv=tuple(command),
                    cwd=acquired.path,
                    env=exec_util.workspace_env(acquired.path, task_id),
                    capture_output=False,
                )
            )
            if result is None:
                io.die(f"missing required command: {command[0]}")
                return 127
            return result.returncode
        finally:
            coordinator.release(acquired.handle)
