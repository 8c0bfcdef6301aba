"""Git helper functions used by the workspace coordinator."""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import urlparse

from . import exec as exec_util

MISSING_GIT_DETAIL = "missing required command: git"


def _run_git(
    args: list[str], *, git_path: str | None = None, timeout_seconds: float | None = None
) -> exec_util.CommandResult | None:
    return exec_util.run_with_runner(
        exec_util.CommandRequest(
            argv=tuple(git_command(args, git_path=git_path)),
            capture_output=True,
            timeout_seconds=timeout_seconds,
        )
    )


def failure_detail(result: exec_util.CommandResult | None) -> str:
    """Describe a failed git invocation for error messages."""
    if result is None:
        return MISSING_GIT_DETAIL
    if result.timed_out:
        return "timed out"
    return result.output or f"exit code {result.returncode}"


def strip_git_suffix(path: str) -> str:
    """Remove a trailing ``.git`` suffix from a path string.

    Example:
        >>> strip_git_suffix("example/repo.git")
        'example/repo'
    """
    normalized = path.strip().rstrip("/")
    if normalized.lower().endswith(".git"):
        return normalized[: -len(".git")]
    return normalized


def git_command(args: list[str], *, git_path: str | None = None) -> list[str]:
    """Build a git command using an optional executable path.

    Example:
        >>> git_command(["status"], git_path=" ")
        ['git', 'status']
    """
    resolved = git_path.strip() if isinstance(git_path, str) else ""
    if not resolved:
        resolved = "git"
    return [resolved, *args]


def normalize_origin_url(value: str) -> str:
    """Normalize a Git origin URL to a stable repository identity.

    Supports SSH SCP-style URLs, HTTP(S) URLs, ``file://`` URLs,
    and local paths.

    Example:
        >>> normalize_origin_url("git@github.com:org/repo.git")
        'github.com/org/repo'
        >>> normalize_origin_url("https://GitHub.com/org/repo")
        'github.com/org/repo'
    """
    raw = value.strip()
    if not raw:
        return ""

    scp_match = re.match(r"^(?P<user>[^@]+)@(?P<host>[^:]+):(?P<path>.+)$", raw)
    if scp_match:
        host = scp_match.group("host").lower()
        path = strip_git_suffix(scp_match.group("path").lstrip("/"))
        return f"{host}/{path}"

    if "://" in raw:
        parsed = urlparse(raw)
        scheme = (parsed.scheme or "").lower()
        host = (parsed.hostname or "").lower()
        path = strip_git_suffix((parsed.path or "").lstrip("/"))
        if scheme in {"http", "https", "ssh", "git"} and host:
            return f"{host}/{path}"
        if scheme == "file":
            local_path = Path(parsed.path).expanduser().resolve()
            return local_path.as_posix()

    if "/" in raw and " " not in raw:
        head, tail = raw.split("/", 1)
        if "." in head:
            host = head.lower()
            path = strip_git_suffix(tail)
            return f"{host}/{path}"

    local_path = Path(raw).expanduser()
    if not local_path.is_absolute():
        local_path = local_path.resolve()
    return local_path.as_posix()


def git_repo_root(start: Path, *, git_path: str | None = None) -> Path | None:
    """Return the git repository root for a starting path."""
    result = _run_git(["-C", str(start), "rev-parse", "--show-toplevel"], git_path=git_path)
    if result is None or result.returncode != 0:
        return None
    resolved = result.stdout.strip()
    if not resolved:
        return None
    return Path(resolved)


def git_origin_url(repo_dir: Path, *, git_path: str | None = None) -> str | None:
    """Return the ``origin`` remote URL for a repository."""
    result = _run_git(["-C", str(repo_dir), "remote", "get-url", "origin"], git_path=git_path)
    if result is None or result.returncode != 0:
        return None
    origin = result.stdout.strip()
    return origin or None


def resolve_repository_id(start: Path, *, git_path: str | None = None) -> str | None:
    """Derive the repository identity for a checkout.

    Uses the normalized origin URL, falling back to the resolved repo root
    for repositories without an ``origin`` remote.
    """
    repo_root = git_repo_root(start, git_path=git_path)
    if repo_root is None:
        return None
    origin = git_origin_url(repo_root, git_path=git_path)
    if origin:
        return normalize_origin_url(origin)
    return repo_root.resolve().as_posix()


def git_current_branch(repo_dir: Path, *, git_path: str | None = None) -> str | None:
    """Return the current branch name (``HEAD`` when detached)."""
    result = _run_git(
        ["-C", str(repo_dir), "rev-parse", "--abbrev-ref", "HEAD"], git_path=git_path
    )
    if result is None or result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_default_branch(repo_dir: Path, *, git_path: str | None = None) -> str | None:
    """Determine the default (trunk) branch for a repository."""
    result = _run_git(
        ["-C", str(repo_dir), "symbolic-ref", "refs/remotes/origin/HEAD"],
        git_path=git_path,
    )
    if result is not None and result.returncode == 0:
        ref = result.stdout.strip()
        prefix = "refs/remotes/origin/"
        if ref.startswith(prefix):
            branch = ref[len(prefix) :].strip()
            if branch:
                return branch

    result = _run_git(
        ["-C", str(repo_dir), "remote", "show", "-n", "origin"], git_path=git_path
    )
    if result is not None and result.returncode == 0:
        for line in result.stdout.splitlines():
            if "HEAD branch:" not in line:
                continue
            _, value = line.split(":", 1)
            branch = value.strip()
            if branch and not (branch.startswith("(") and branch.endswith(")")):
                return branch

    for candidate in ("main", "master"):
        if git_ref_exists(repo_dir, f"refs/heads/{candidate}", git_path=git_path):
            return candidate
        if git_ref_exists(repo_dir, f"refs/remotes/origin/{candidate}", git_path=git_path):
            return candidate

    branch = git_current_branch(repo_dir, git_path=git_path)
    if branch == "HEAD":
        return None
    return branch


def git_status_porcelain(repo_dir: Path, *, git_path: str | None = None) -> list[str] | None:
    """Return porcelain status lines, including untracked files.

    Returns ``None`` when git cannot report status.
    """
    result = _run_git(
        ["-C", str(repo_dir), "status", "--porcelain", "--untracked-files=normal"],
        git_path=git_path,
    )
    if result is None or result.returncode != 0:
        return None
    return [line for line in result.stdout.splitlines() if line.strip()]


def git_ref_exists(repo_dir: Path, ref: str, *, git_path: str | None = None) -> bool:
    """Check whether a fully-qualified git ref exists."""
    result = _run_git(
        ["-C", str(repo_dir), "show-ref", "--verify", "--quiet", ref], git_path=git_path
    )
    return result is not None and result.returncode == 0


def git_rev_parse(repo_dir: Path, ref: str, *, git_path: str | None = None) -> str | None:
    """Resolve a ref to its commit hash."""
    result = _run_git(
        ["-C", str(repo_dir), "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"],
        git_path=git_path,
    )
    if result is None or result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_has_remote(
    repo_dir: Path, remote: str = "origin", *, git_path: str | None = None
) -> bool:
    """Return whether ``remote`` is configured."""
    result = _run_git(["-C", str(repo_dir), "remote"], git_path=git_path)
    if result is None or result.returncode != 0:
        return False
    return remote in {line.strip() for line in result.stdout.splitlines()}


def git_fetch(
    repo_dir: Path,
    remote: str = "origin",
    *,
    git_path: str | None = None,
    timeout_seconds: float | None = None,
) -> exec_util.CommandResult | None:
    """Fetch ``remote`` into the repository."""
    return _run_git(
        ["-C", str(repo_dir), "fetch", "--prune", remote],
        git_path=git_path,
        timeout_seconds=timeout_seconds,
    )


def git_checkout(
    repo_dir: Path, args: list[str], *, git_path: str | None = None
) -> exec_util.CommandResult | None:
    """Run ``git checkout`` with ``args`` in the repository."""
    return _run_git(["-C", str(repo_dir), "checkout", *args], git_path=git_path)


def git_branch_names(repo_dir: Path, *, git_path: str | None = None) -> set[str]:
    """Return local branch names."""
    result = _run_git(
        ["-C", str(repo_dir), "for-each-ref", "--format=%(refname:short)", "refs/heads"],
        git_path=git_path,
    )
    if result is None or result.returncode != 0:
        return set()
    return {line.strip() for line in result.stdout.splitlines() if line.strip()}


def git_worktree_add(
    repo_root: Path, worktree_path: Path, ref: str, *, git_path: str | None = None
) -> exec_util.CommandResult | None:
    """Add a detached worktree for ``ref`` at ``worktree_path``."""
    return _run_git(
        ["-C", str(repo_root), "worktree", "add", "--detach", str(worktree_path), ref],
        git_path=git_path,
    )


def git_worktree_branches(repo_dir: Path, *, git_path: str | None = None) -> dict[str, Path]:
    """Map checked-out ``refs/heads/*`` refs to the worktree holding them."""
    result = _run_git(
        ["-C", str(repo_dir), "worktree", "list", "--porcelain"], git_path=git_path
    )
    if result is None or result.returncode != 0:
        return {}
    branches: dict[str, Path] = {}
    current: Path | None = None
    for line in result.stdout.splitlines():
        if line.startswith("worktree "):
            current = Path(line.split(" ", 1)[1].strip())
        elif line.startswith("branch ") and current is not None:
            branches[line.split(" ", 1)[1].strip()] = current
    return branches
