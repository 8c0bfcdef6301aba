# ruff: noqa: E402

import builtins
import subprocess
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import workpool.io as io
import workpool.log as workpool_log


@pytest.fixture(autouse=True)
def _default_io_patches(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(io, "_use_questionary", lambda: False)
    monkeypatch.setenv("WORKPOOL_REGISTRY", str(tmp_path / "registry" / "workspaces.json"))
    monkeypatch.delenv("WORKPOOL_ALLOW_OFFLINE", raising=False)
    monkeypatch.setattr(workpool_log, "_configured_level", None)
    monkeypatch.setattr(workpool_log, "_no_color_override", None)

    def fail_input(prompt: str = "") -> str:
        raise AssertionError("prompted unexpectedly")

    monkeypatch.setattr(builtins, "input", fail_input)


def run_git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", "-C", str(repo), *args], check=True, capture_output=True, text=True
    )
    return completed.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    (repo / name).write_text(content, encoding="utf-8")
    run_git(repo, "add", name)
    run_git(repo, "commit", "-m", message)
    return run_git(repo, "rev-parse", "HEAD")


@pytest.fixture
def origin_repo(tmp_path: Path) -> Path:
    """Source repository with a single commit on ``main``."""
    repo = tmp_path / "origin"
    repo.mkdir()
    run_git(repo, "init")
    run_git(repo, "config", "user.email", "test@example.com")
    run_git(repo, "config", "user.name", "Test User")
    run_git(repo, "config", "commit.gpgsign", "false")
    commit_file(repo, "README.md", "base\n", "chore: initial")
    run_git(repo, "branch", "-M", "main")
    return repo


@pytest.fixture
def clone_repo(tmp_path: Path, origin_repo: Path) -> Path:
    """Clone of ``origin_repo`` with ``origin`` as its remote."""
    clone = tmp_path / "clone"
    subprocess.run(
        ["git", "clone", "--quiet", str(origin_repo), str(clone)],
        check=True,
        capture_output=True,
    )
    run_git(clone, "config", "user.email", "test@example.com")
    run_git(clone, "config", "user.name", "Test User")
    run_git(clone, "config", "commit.gpgsign", "false")
    return clone


@pytest.fixture
def git_cli() -> SimpleNamespace:
    """Plain git helpers for arranging repository state in tests."""
    return SimpleNamespace(run=run_git, commit=commit_file)
