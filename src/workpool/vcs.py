"""Version-control collaborator used by the workspace preparer."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from . import git, paths
from .errors import VcsSyncFailedError

DEFAULT_REMOTE = "origin"


class Vcs(Protocol):
    """Operations the preparer needs from a working copy."""

    def status(self, workspace_path: Path) -> list[str]: ...

    def has_remote(self, workspace_path: Path) -> bool: ...

    def fetch(self, workspace_path: Path) -> None: ...

    def default_branch(self, workspace_path: Path) -> str | None: ...

    def checkout(self, workspace_path: Path, ref: str) -> str: ...

    def create_branch(self, workspace_path: Path, name: str) -> str: ...


def unique_branch_name(name: str, existing: set[str]) -> str:
    """Return ``name`` or the first ``name-N`` (N >= 2) not in ``existing``.

    Example:
        >>> unique_branch_name("feature", {"feature", "feature-2"})
        'feature-3'
        >>> unique_branch_name("fresh", {"feature"})
        'fresh'
    """
    if name not in existing:
        return name
    suffix = 2
    while f"{name}-{suffix}" in existing:
        suffix += 1
    return f"{name}-{suffix}"


class GitVcs:
    """Git-backed ``Vcs`` adapter."""

    def __init__(
        self,
        *,
        git_path: str | None = None,
        remote: str = DEFAULT_REMOTE,
        fetch_timeout_seconds: float | None = None,
    ) -> None:
        self.git_path = git_path
        self.remote = remote
        self.fetch_timeout_seconds = fetch_timeout_seconds

    def status(self, workspace_path: Path) -> list[str]:
        lines = git.git_status_porcelain(workspace_path, git_path=self.git_path)
        if lines is None:
            raise VcsSyncFailedError(workspace_path, "status", "git status failed")
        return [line for line in lines if line[3:].strip() != paths.LOCK_FILENAME]

    def has_remote(self, workspace_path: Path) -> bool:
        return git.git_has_remote(workspace_path, self.remote, git_path=self.git_path)

    def fetch(self, workspace_path: Path) -> None:
        result = git.git_fetch(
            workspace_path,
            self.remote,
            git_path=self.git_path,
            timeout_seconds=self.fetch_timeout_seconds,
        )
        if result is None or result.returncode != 0:
            raise VcsSyncFailedError(workspace_path, "fetch", git.failure_detail(result))

    def default_branch(self, workspace_path: Path) -> str | None:
        return git.git_default_branch(workspace_path, git_path=self.git_path)

    def checkout(self, workspace_path: Path, ref: str) -> str:
        """Check out ``ref`` at its latest known commit.

        Branch names are reset to the remote-tracking tip when one exists, so
        a reused workspace picks up what the last fetch brought in. Other refs
        (tags, hashes) are checked out detached, as are branches another
        worktree already has checked out.
        """
        remote_ref = f"refs/remotes/{self.remote}/{ref}"
        owner = git.git_worktree_branches(workspace_path, git_path=self.git_path).get(
            f"refs/heads/{ref}"
        )
        taken = owner is not None and owner.resolve() != Path(workspace_path).resolve()
        if git.git_ref_exists(workspace_path, remote_ref, git_path=self.git_path):
            target = f"{self.remote}/{ref}"
            args = ["--detach", target] if taken else ["-B", ref, target]
        elif git.git_ref_exists(workspace_path, f"refs/heads/{ref}", git_path=self.git_path):
            args = ["--detach", ref] if taken else [ref]
        else:
            args = ["--detach", ref]
        result = git.git_checkout(workspace_path, args, git_path=self.git_path)
        if result is None or result.returncode != 0:
            raise VcsSyncFailedError(
                workspace_path, f"checkout {ref}", git.failure_detail(result)
            )
        return ref

    def create_branch(self, workspace_path: Path, name: str) -> str:
        existing = git.git_branch_names(workspace_path, git_path=self.git_path)
        branch = unique_branch_name(name, existing)
        result = git.git_checkout(workspace_path, ["-b", branch], git_path=self.git_path)
        if result is None or result.returncode != 0:
            raise VcsSyncFailedError(
                workspace_path, f"create branch {branch}", git.failure_detail(result)
            )
        return branch
