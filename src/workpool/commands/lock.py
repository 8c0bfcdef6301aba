"""Implementation for the ``workpool lock`` and ``workpool unlock`` commands."""

from __future__ import annotations

from pathlib import Path

from .. import io, log, project
from ..errors import WorkspaceError
from ..locks import LockHolder


def _target_path(args: object) -> Path:
    raw = getattr(args, "path", None) or "."
    return Path(str(raw)).expanduser().resolve()


def _lock_available(args: object) -> None:
    create = bool(getattr(args, "create", False))
    ctx = project.resolve_project()
    coordinator = project.build_coordinator(ctx)
    label = "workpool lock --available" + (" --create" if create else "")
    holder = LockHolder.current(label, lock_type="persistent")
    try:
        coordinator.prune_missing(ctx.repository_id)
        acquired = coordinator.lock_available(ctx.repository_id, holder=holder)
        if acquired is None and create:
            acquired = coordinator.select_or_create(
                ctx.repository_id,
                project.default_task_id(),
                holder=holder,
                prefer_new=True,
            )
    except WorkspaceError as exc:
        project.fail(exc)
        return
    if acquired is None:
        io.die("no available workspace; use --create to create one")
        return
    verb = "created and locked" if acquired.created else "locked"
    log.debug(f"{verb} {acquired.path}")
    io.say(str(acquired.path))


def lock_workspace(args: object) -> None:
    """Take a persistent lock on a workspace.

    Persistent locks outlive this process and are only removed by
    ``workpool unlock`` or by ageing past the stale threshold. With
    ``available`` the first free workspace of the current repository is
    locked instead (``create`` makes one when none is free) and its path is
    printed on stdout.

    Example:
        $ workpool lock ~/workspaces/repo-task-1
        $ cd "$(workpool lock --available --create)"
    """
    if getattr(args, "available", False):
        _lock_available(args)
        return
    if getattr(args, "create", False):
        io.die("--create only applies together with --available")
    path = _target_path(args)
    ctx = project.resolve_project(path)
    coordinator = project.build_coordinator(ctx)
    holder = LockHolder.current("workpool lock", lock_type="persistent")
    try:
        handle = coordinator.lock(path, holder)
    except WorkspaceError as exc:
        project.fail(exc)
        return
    log.success(f"locked {handle.workspace_path}")


def unlock_workspace(args: object) -> None:
    """Remove the lock on a workspace.

    Example:
        $ workpool unlock --force ~/workspaces/repo-task-1
    """
    path = _target_path(args)
    ctx = project.resolve_project(path)
    coordinator = project.build_coordinator(ctx)
    try:
        removed = coordinator.unlock(path, force=bool(getattr(args, "force", False)))
    except WorkspaceError as exc:
        project.fail(exc)
        return
    if removed:
        log.success(f"unlocked {path}")
    else:
        log.info(f"{path} was not locked")
