import json
import shutil
from pathlib import Path

import pytest
from click.testing import Result
from typer.testing import CliRunner

import workpool.cli as cli
import workpool.io as io
from workpool import paths
from workpool.commands.run import ABORT, CHOOSE_ANOTHER
from workpool.registry import JsonFileStore, Registry


@pytest.fixture
def project_repo(clone_repo: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(paths, "default_clone_location", lambda: tmp_path / "pool")
    monkeypatch.setattr(paths, "installed_config_path", lambda: tmp_path / "config.user.json")
    monkeypatch.chdir(clone_repo)
    return clone_repo


def _registry() -> Registry:
    return Registry(JsonFileStore(paths.default_registry_path()))


def _run(*args: str) -> Result:
    return CliRunner().invoke(cli.app, list(args))


def _listed() -> list[dict]:
    result = _run("list", "--format", "json")
    assert result.exit_code == 0
    return json.loads(result.stdout)


def test_run_creates_workspace_and_returns_command_exit_code(
    project_repo: Path, tmp_path: Path
) -> None:
    result = _run(
        "run",
        "--task",
        "t1",
        "--non-interactive",
        "--",
        "sh",
        "-c",
        'printf "%s" "$WORKPOOL_TASK_ID" > task.txt; exit 5',
    )

    assert result.exit_code == 5
    workspace = (tmp_path / "pool" / "clone-t1").resolve()
    assert (workspace / "task.txt").read_text(encoding="utf-8") == "t1"
    assert not (workspace / ".workpool.lock").exists()
    entries = _registry().all()
    assert [Path(entry.path) for entry in entries] == [workspace]
    assert entries[0].task_id == "t1"
    assert entries[0].locked_by is None


def test_run_reuses_free_workspace(project_repo: Path, tmp_path: Path) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    assert _run("run", "--task", "t2", "--non-interactive", "--", "true").exit_code == 0

    entries = _registry().all()
    assert len(entries) == 1
    assert entries[0].task_id == "t2"
    assert not (tmp_path / "pool" / "clone-t2").exists()


def test_run_with_new_flag_always_creates(project_repo: Path, tmp_path: Path) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    assert _run("run", "--task", "t2", "--new", "--non-interactive", "--", "true").exit_code == 0

    assert len(_registry().all()) == 2
    assert (tmp_path / "pool" / "clone-t2").is_dir()


def test_run_fails_on_dirty_workspace_and_releases_lock(
    project_repo: Path, tmp_path: Path
) -> None:
    created = _run("run", "--task", "t1", "--non-interactive", "--", "touch", "scratch.txt")
    assert created.exit_code == 0
    workspace = (tmp_path / "pool" / "clone-t1").resolve()

    result = _run("run", "--task", "t2", "--non-interactive", "--", "true")

    assert result.exit_code == 1
    assert "local changes" in result.output
    assert not (workspace / ".workpool.lock").exists()


def test_run_requires_a_command(project_repo: Path) -> None:
    result = _run("run", "--non-interactive")

    assert result.exit_code == 1
    assert "no command given" in result.output


def test_commands_outside_git_repository_fail(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    outside = tmp_path / "plain"
    outside.mkdir()
    monkeypatch.chdir(outside)

    result = _run("list")

    assert result.exit_code == 1
    assert "not inside a git repository" in result.output


def test_lock_list_unlock_cycle(project_repo: Path, tmp_path: Path) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    workspace = (tmp_path / "pool" / "clone-t1").resolve()

    assert _run("lock", str(workspace)).exit_code == 0
    record = json.loads((workspace / ".workpool.lock").read_text(encoding="utf-8"))
    assert record["type"] == "persistent"
    (listed,) = _listed()
    assert listed["lockState"] == "locked"
    assert listed["lockedBy"]["type"] == "persistent"

    assert _run("lock", str(workspace)).exit_code == 1

    assert _run("unlock", str(workspace)).exit_code == 0
    assert not (workspace / ".workpool.lock").exists()
    (listed,) = _listed()
    assert listed["lockState"] == "free"
    assert "lockedBy" not in listed


def test_primary_workspace_is_not_reused(project_repo: Path, tmp_path: Path) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    workspace = (tmp_path / "pool" / "clone-t1").resolve()

    assert _run("primary", str(workspace)).exit_code == 0
    assert _run("run", "--task", "t2", "--non-interactive", "--", "true").exit_code == 0

    assert (tmp_path / "pool" / "clone-t2").is_dir()
    flags = {Path(item["path"]).name: item["primary"] for item in _listed()}
    assert flags == {"clone-t1": True, "clone-t2": False}

    assert _run("primary", "--off", str(workspace)).exit_code == 0
    assert _registry().get(workspace).primary is False


def test_prepare_command_syncs_and_releases(project_repo: Path, tmp_path: Path) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    workspace = (tmp_path / "pool" / "clone-t1").resolve()

    result = _run("prepare", str(workspace), "--base", "main")

    assert result.exit_code == 0
    assert "prepared" in result.output
    assert not (workspace / ".workpool.lock").exists()


def test_list_table_output(project_repo: Path) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0

    result = _run("list")

    assert result.exit_code == 0
    assert "Workspaces" in result.output


@pytest.mark.parametrize(
    ("choice", "exit_code", "second_created"),
    [(CHOOSE_ANOTHER, 0, True), (ABORT, 1, False)],
)
def test_interactive_run_recovers_from_dirty_workspace(
    project_repo: Path,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    choice: str,
    exit_code: int,
    second_created: bool,
) -> None:
    created = _run("run", "--task", "t1", "--non-interactive", "--", "touch", "scratch.txt")
    assert created.exit_code == 0
    dirty = (tmp_path / "pool" / "clone-t1").resolve()
    asked: list[str] = []

    def fake_select(text: str, choices: object, default: object = None, **_kwargs: object) -> str:
        asked.append(text)
        return choice

    monkeypatch.setattr(io, "is_interactive", lambda: True)
    monkeypatch.setattr(io, "select", fake_select)

    result = _run("run", "--task", "t2", "--", "true")

    assert result.exit_code == exit_code
    assert len(asked) == 1
    assert (tmp_path / "pool" / "clone-t2").is_dir() is second_created
    assert not (dirty / ".workpool.lock").exists()


def test_lock_available_prints_and_locks_free_workspace(
    project_repo: Path, tmp_path: Path
) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    workspace = (tmp_path / "pool" / "clone-t1").resolve()

    result = _run("lock", "--available")

    assert result.exit_code == 0
    assert result.stdout.strip().splitlines()[-1] == str(workspace)
    record = json.loads((workspace / ".workpool.lock").read_text(encoding="utf-8"))
    assert record["type"] == "persistent"
    assert "--available" in record["command"]

    assert _run("lock", "--available").exit_code == 1


def test_lock_available_create_makes_workspace_when_all_busy(
    project_repo: Path, tmp_path: Path
) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    busy = (tmp_path / "pool" / "clone-t1").resolve()
    assert _run("lock", str(busy)).exit_code == 0

    result = _run("lock", "--available", "--create")

    assert result.exit_code == 0
    created = Path(result.stdout.strip().splitlines()[-1])
    assert created != busy
    assert (created / ".workpool.lock").exists()
    assert len(_registry().all()) == 2


def test_lock_create_requires_available(project_repo: Path) -> None:
    result = _run("lock", "--create")

    assert result.exit_code == 1
    assert "--available" in result.output


def test_list_prunes_deleted_workspaces_unless_disabled(
    project_repo: Path, tmp_path: Path
) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    shutil.rmtree(tmp_path / "pool" / "clone-t1")

    kept = _run("list", "--no-prune", "--format", "json")
    assert kept.exit_code == 0
    assert len(json.loads(kept.stdout)) == 1

    pruned = _run("list")
    assert pruned.exit_code == 0
    assert "removed entry for deleted workspace" in pruned.output
    assert _registry().all() == []
    assert _listed() == []


def test_update_sets_and_clears_metadata(project_repo: Path, tmp_path: Path) -> None:
    assert _run("run", "--task", "t1", "--non-interactive", "--", "true").exit_code == 0
    workspace = (tmp_path / "pool" / "clone-t1").resolve()

    result = _run(
        "update",
        str(workspace),
        "--name",
        "login fix",
        "--issue",
        "https://example.com/issues/1",
        "--issue",
        "https://example.com/issues/2",
    )
    assert result.exit_code == 0
    entry = _registry().get(workspace)
    assert entry.name == "login fix"
    assert entry.issue_urls == [
        "https://example.com/issues/1",
        "https://example.com/issues/2",
    ]

    assert _run("update", str(workspace), "--name", "", "--clear-issues").exit_code == 0
    entry = _registry().get(workspace)
    assert entry.name is None
    assert entry.issue_urls is None
    assert entry.task_id == "t1"


def test_update_without_options_fails(project_repo: Path, tmp_path: Path) -> None:
    result = _run("update", str(tmp_path))

    assert result.exit_code == 1
    assert "nothing to update" in result.output
