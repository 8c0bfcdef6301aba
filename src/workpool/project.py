"""Resolve the repository, config, and coordinator for CLI commands."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from pathlib import Path

from . import config, git, io, log
from .coordinator import WorkspaceCoordinator
from .creator import WorktreeCreator
from .errors import WorkspaceError
from .locks import LockManager
from .models import WorkpoolConfig
from .registry import JsonFileStore, Registry
from .vcs import GitVcs


@dataclass(frozen=True)
class ProjectContext:
    repo_root: Path
    repository_id: str
    config: WorkpoolConfig
    registry_path: Path

    @property
    def git_path(self) -> str:
        return config.resolve_git_path(self.config)


def resolve_project(start: Path | None = None) -> ProjectContext:
    """Resolve the git repository around ``start`` (default: cwd)."""
    cwd = start or Path.cwd()
    repo_root = git.git_repo_root(cwd)
    if repo_root is None:
        io.die(f"not inside a git repository: {cwd}")
    cfg = config.load_config(repo_root)
    git_path = config.resolve_git_path(cfg)
    repository_id = git.resolve_repository_id(repo_root, git_path=git_path)
    if not repository_id:
        io.die(f"cannot determine repository identity for {repo_root}")
    registry_path = config.resolve_registry_path(cfg)
    log.debug(f"repository {repository_id} (registry {registry_path})")
    return ProjectContext(
        repo_root=repo_root,
        repository_id=repository_id,
        config=cfg,
        registry_path=registry_path,
    )


def default_task_id() -> str:
    """Task id for invocations that were not given one."""
    now = dt.datetime.now(tz=dt.timezone.utc)
    return f"task-{now.strftime('%Y%m%d-%H%M%S')}"


def resolve_interactive(ctx: ProjectContext, non_interactive: bool = False) -> bool:
    """Return whether prompts may be shown for this invocation."""
    if non_interactive:
        return False
    configured = ctx.config.workspace.interactive
    if configured is not None:
        return configured and io.is_interactive()
    return io.is_interactive()


def build_coordinator(
    ctx: ProjectContext,
    *,
    interactive: bool = False,
    base_ref: str | None = None,
) -> WorkspaceCoordinator:
    workspace_cfg = ctx.config.workspace
    registry = Registry(JsonFileStore(ctx.registry_path))
    return WorkspaceCoordinator(
        registry=registry,
        locks=LockManager(stale_threshold=workspace_cfg.stale_lock_threshold),
        creator=WorktreeCreator(
            registry,
            ctx.repo_root,
            config.resolve_clone_location(ctx.config, ctx.repo_root),
            base_ref=base_ref,
            git_path=ctx.git_path,
        ),
        vcs=GitVcs(git_path=ctx.git_path),
        mode="interactive" if interactive else "non-interactive",
        prompt_timeout_seconds=workspace_cfg.prompt_timeout_seconds,
        update_commands=tuple(workspace_cfg.update_commands),
    )


def fail(exc: WorkspaceError) -> None:
    """Exit with a workspace error and its recovery hint."""
    message = str(exc)
    if exc.recovery_hint:
        message = f"{message}\nhint: {exc.recovery_hint}"
    io.die(message)
