"""Implementation for the ``workpool prepare`` command."""

from __future__ import annotations

from pathlib import Path

from .. import log, project
from ..errors import WorkspaceError
from ..locks import LockHolder


def prepare_workspace(args: object) -> None:
    """Lock a workspace, bring it up to date, and release it again.

    Args:
        args: CLI argument object with ``path``, ``base`` and ``task``.

    Example:
        $ workpool prepare ~/workspaces/repo-task-1 --base main
    """
    path = Path(str(getattr(args, "path", None) or ".")).expanduser().resolve()
    base_ref = getattr(args, "base", None)
    task_id = getattr(args, "task", None)
    ctx = project.resolve_project(path)
    coordinator = project.build_coordinator(ctx)
    holder = LockHolder.current("workpool prepare")
    try:
        handle = coordinator.lock(path, holder)
    except WorkspaceError as exc:
        project.fail(exc)
        return
    try:
        branch_name = task_id if (task_id and ctx.config.workspace.create_branch) else None
        result = coordinator.prepare(
            handle, base_ref, task_id=task_id, branch_name=branch_name
        )
    except WorkspaceError as exc:
        project.fail(exc)
        return
    finally:
        coordinator.release(handle)
    target = result.branch or result.synced_ref
    log.success(f"prepared {path} at {target}")
