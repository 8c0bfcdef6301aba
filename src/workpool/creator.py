"""Create new workspaces when no registered one can be reused."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol

from . import git, log, paths
from .errors import VcsSyncFailedError
from .models import WorkspaceEntry
from .registry import Registry


class WorkspaceCreator(Protocol):
    """Makes a fresh working copy and registers it, unlocked and non-primary."""

    def create_workspace(self, repository_id: str, task_id: str) -> WorkspaceEntry: ...


def slugify(value: str) -> str:
    """Return a filesystem-friendly slug.

    Example:
        >>> slugify("Fix: Login / Timeout")
        'fix-login-timeout'
    """
    slug = re.sub(r"[^a-z0-9._-]+", "-", value.strip().lower())
    return slug.strip("-.")


def unique_workspace_path(parent: Path, name: str) -> Path:
    """Return ``parent / name`` or the first free ``name-N`` sibling."""
    candidate = parent / name
    suffix = 2
    while candidate.exists():
        candidate = parent / f"{name}-{suffix}"
        suffix += 1
    return candidate


class WorktreeCreator:
    """Create workspaces as detached git worktrees of a source checkout."""

    def __init__(
        self,
        registry: Registry,
        repo_root: Path,
        clone_location: Path,
        *,
        base_ref: str | None = None,
        git_path: str | None = None,
    ) -> None:
        self.registry = registry
        self.repo_root = repo_root
        self.clone_location = clone_location
        self.base_ref = base_ref
        self.git_path = git_path

    def _start_ref(self) -> str:
        ref = (self.base_ref or "").strip()
        if not ref:
            ref = git.git_default_branch(self.repo_root, git_path=self.git_path) or "HEAD"
        if ref == "HEAD":
            return ref
        if git.git_ref_exists(self.repo_root, f"refs/heads/{ref}", git_path=self.git_path):
            return ref
        if git.git_ref_exists(self.repo_root, f"refs/remotes/origin/{ref}", git_path=self.git_path):
            return f"origin/{ref}"
        return ref

    def create_workspace(self, repository_id: str, task_id: str) -> WorkspaceEntry:
        paths.ensure_dir(self.clone_location)
        repo_name = slugify(self.repo_root.name) or "workspace"
        task_slug = slugify(task_id)
        name = f"{repo_name}-{task_slug}" if task_slug else repo_name
        workspace_path = unique_workspace_path(self.clone_location, name)
        ref = self._start_ref()

        log.info(f"creating workspace {workspace_path} from {ref}")
        result = git.git_worktree_add(
            self.repo_root, workspace_path, ref, git_path=self.git_path
        )
        if result is None or result.returncode != 0:
            raise VcsSyncFailedError(workspace_path, "worktree add", git.failure_detail(result))

        return self.registry.add(
            WorkspaceEntry(
                path=str(workspace_path),
                repository_id=repository_id,
                task_id=task_id,
                primary=False,
            )
        )
