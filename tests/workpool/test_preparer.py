from pathlib import Path
from types import SimpleNamespace

import pytest

from workpool.errors import (
    DirtyWorkspaceError,
    UnexpectedStateError,
    UpdateCommandFailedError,
    VcsSyncFailedError,
)
from workpool.exec import CommandRequest, CommandResult
from workpool.locks import LockHolder, LockManager
from workpool.models import UpdateCommand, WorkspaceEntry
from workpool.preparer import prepare_workspace, run_update_commands
from workpool.vcs import GitVcs


class FakeVcs:
    def __init__(
        self,
        *,
        changes: list[str] | None = None,
        remote: bool = True,
        fetch_error: bool = False,
        checkout_error: bool = False,
        default_branch: str | None = "main",
    ) -> None:
        self.changes = changes or []
        self.remote = remote
        self.fetch_error = fetch_error
        self.checkout_error = checkout_error
        self.default = default_branch
        self.calls: list[tuple[str, ...]] = []

    def status(self, workspace_path: Path) -> list[str]:
        self.calls.append(("status",))
        return list(self.changes)

    def has_remote(self, workspace_path: Path) -> bool:
        self.calls.append(("has_remote",))
        return self.remote

    def fetch(self, workspace_path: Path) -> None:
        self.calls.append(("fetch",))
        if self.fetch_error:
            raise VcsSyncFailedError(workspace_path, "fetch", "network unreachable")

    def default_branch(self, workspace_path: Path) -> str | None:
        self.calls.append(("default_branch",))
        return self.default

    def checkout(self, workspace_path: Path, ref: str) -> str:
        self.calls.append(("checkout", ref))
        if self.checkout_error:
            raise VcsSyncFailedError(workspace_path, f"checkout {ref}", "no such ref")
        return ref

    def create_branch(self, workspace_path: Path, name: str) -> str:
        self.calls.append(("create_branch", name))
        return f"{name}-2"


class RecordingRunner:
    def __init__(self, *codes: int) -> None:
        self.codes = list(codes)
        self.requests: list[CommandRequest] = []

    def run(self, request: CommandRequest) -> CommandResult | None:
        self.requests.append(request)
        code = self.codes.pop(0) if self.codes else 0
        return CommandResult(argv=request.argv, returncode=code, stdout="", stderr="")


@pytest.fixture
def locked(tmp_path: Path):
    workspace = tmp_path / "ws"
    workspace.mkdir()
    handle = LockManager().acquire_lock(workspace, LockHolder.current("test"))
    entry = WorkspaceEntry(path=str(workspace), repository_id="repo", task_id="task-1")
    yield SimpleNamespace(path=workspace, handle=handle, entry=entry)
    handle.release()


def _command(title: str, **extra: object) -> UpdateCommand:
    return UpdateCommand(title=title, command=f"echo {title}", **extra)


def test_released_handle_is_rejected_before_any_work(locked: SimpleNamespace) -> None:
    vcs = FakeVcs()
    locked.handle.release()

    with pytest.raises(UnexpectedStateError):
        prepare_workspace(locked.handle, locked.entry, vcs=vcs)

    assert vcs.calls == []


def test_handle_for_other_workspace_is_rejected(
    locked: SimpleNamespace, tmp_path: Path
) -> None:
    vcs = FakeVcs()
    other = WorkspaceEntry(path=str(tmp_path), repository_id="repo")

    with pytest.raises(UnexpectedStateError):
        prepare_workspace(locked.handle, other, vcs=vcs)

    assert vcs.calls == []


def test_dirty_workspace_stops_before_sync_and_commands(locked: SimpleNamespace) -> None:
    vcs = FakeVcs(changes=[" M README.md", "?? notes.txt"])
    runner = RecordingRunner()

    with pytest.raises(DirtyWorkspaceError) as excinfo:
        prepare_workspace(
            locked.handle, locked.entry, "main", [_command("install")], vcs=vcs, runner=runner
        )

    assert excinfo.value.changes == [" M README.md", "?? notes.txt"]
    assert vcs.calls == [("status",)]
    assert runner.requests == []


def test_syncs_to_default_branch_and_keeps_lock(locked: SimpleNamespace) -> None:
    vcs = FakeVcs()

    result = prepare_workspace(locked.handle, locked.entry, vcs=vcs, runner=RecordingRunner())

    assert result.synced_ref == "main"
    assert result.fetched is True
    assert ("fetch",) in vcs.calls
    assert vcs.calls[-1] == ("checkout", "main")
    assert not locked.handle.released
    assert (locked.path / ".workpool.lock").exists()


def test_base_ref_overrides_default_branch(locked: SimpleNamespace) -> None:
    vcs = FakeVcs()

    result = prepare_workspace(locked.handle, locked.entry, "release/1.0", vcs=vcs)

    assert result.synced_ref == "release/1.0"
    assert ("default_branch",) not in vcs.calls


def test_missing_remote_skips_fetch(locked: SimpleNamespace) -> None:
    vcs = FakeVcs(remote=False)

    result = prepare_workspace(locked.handle, locked.entry, vcs=vcs)

    assert result.fetched is False
    assert ("fetch",) not in vcs.calls


def test_fetch_failure_aborts(locked: SimpleNamespace) -> None:
    vcs = FakeVcs(fetch_error=True)

    with pytest.raises(VcsSyncFailedError) as excinfo:
        prepare_workspace(locked.handle, locked.entry, vcs=vcs)

    assert excinfo.value.step == "fetch"
    assert not any(call[0] == "checkout" for call in vcs.calls)


def test_fetch_failure_tolerated_when_offline_allowed(
    locked: SimpleNamespace, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("WORKPOOL_ALLOW_OFFLINE", "1")
    vcs = FakeVcs(fetch_error=True)

    result = prepare_workspace(locked.handle, locked.entry, vcs=vcs)

    assert result.fetched is False
    assert vcs.calls[-1] == ("checkout", "main")


def test_checkout_failure_raises_and_skips_commands(locked: SimpleNamespace) -> None:
    vcs = FakeVcs(checkout_error=True)
    runner = RecordingRunner()

    with pytest.raises(VcsSyncFailedError):
        prepare_workspace(
            locked.handle, locked.entry, "nope", [_command("install")], vcs=vcs, runner=runner
        )

    assert runner.requests == []


def test_unknown_default_branch_is_sync_failure(locked: SimpleNamespace) -> None:
    with pytest.raises(VcsSyncFailedError):
        prepare_workspace(locked.handle, locked.entry, vcs=FakeVcs(default_branch=None))


def test_branch_created_after_sync(locked: SimpleNamespace) -> None:
    vcs = FakeVcs()

    result = prepare_workspace(locked.handle, locked.entry, vcs=vcs, branch_name="task-1")

    assert result.branch == "task-1-2"
    assert vcs.calls[-2:] == [("checkout", "main"), ("create_branch", "task-1")]


def test_failing_update_command_stops_remaining(locked: SimpleNamespace) -> None:
    runner = RecordingRunner(0, 3, 0)
    commands = [_command("first"), _command("second"), _command("third")]

    with pytest.raises(UpdateCommandFailedError) as excinfo:
        prepare_workspace(
            locked.handle, locked.entry, update_commands=commands, vcs=FakeVcs(), runner=runner
        )

    assert excinfo.value.title == "second"
    assert excinfo.value.exit_code == 3
    assert len(runner.requests) == 2
    assert not locked.handle.released


def test_allow_failure_continues(locked: SimpleNamespace) -> None:
    runner = RecordingRunner(1, 0)
    commands = [_command("optional", allow_failure=True), _command("required")]

    result = prepare_workspace(
        locked.handle, locked.entry, update_commands=commands, vcs=FakeVcs(), runner=runner
    )

    assert [outcome.exit_code for outcome in result.commands] == [1, 0]
    assert result.commands[0].allowed_failure is True
    assert len(runner.requests) == 2


def test_update_commands_get_env_and_cwd(tmp_path: Path) -> None:
    runner = RecordingRunner()
    command = UpdateCommand.model_validate(
        {
            "title": "build",
            "command": "make",
            "workingDirectory": "packages/app",
            "env": {"MODE": "ci"},
            "timeoutSeconds": 30,
        }
    )

    run_update_commands(tmp_path, [command], task_id="task-7", runner=runner)

    request = runner.requests[0]
    assert request.argv[-1] == "make"
    assert request.cwd == tmp_path / "packages/app"
    assert request.env is not None
    assert request.env["MODE"] == "ci"
    assert request.env["WORKPOOL_TASK_ID"] == "task-7"
    assert request.env["WORKPOOL_WORKSPACE_PATH"] == str(tmp_path)
    assert request.timeout_seconds == 30


def test_prepare_syncs_real_clone_to_latest_origin(
    tmp_path: Path, origin_repo: Path, clone_repo: Path, git_cli: SimpleNamespace
) -> None:
    latest = git_cli.commit(origin_repo, "CHANGELOG.md", "v2\n", "feat: newer")
    entry = WorkspaceEntry(path=str(clone_repo), repository_id="repo", task_id="t")
    commands = [
        UpdateCommand(
            title="record task",
            command='printf "%s" "$WORKPOOL_TASK_ID" > task.txt',
        )
    ]

    with LockManager().acquire_lock(clone_repo, LockHolder.current("test")) as handle:
        result = prepare_workspace(handle, entry, update_commands=commands, vcs=GitVcs())

    assert result.synced_ref == "main"
    assert git_cli.run(clone_repo, "rev-parse", "HEAD") == latest
    assert (clone_repo / "task.txt").read_text(encoding="utf-8") == "t"


def test_prepare_rejects_real_dirty_clone(clone_repo: Path, git_cli: SimpleNamespace) -> None:
    (clone_repo / "README.md").write_text("edited\n", encoding="utf-8")
    before = git_cli.run(clone_repo, "rev-parse", "HEAD")
    entry = WorkspaceEntry(path=str(clone_repo), repository_id="repo")

    with LockManager().acquire_lock(clone_repo, LockHolder.current("test")) as handle:
        with pytest.raises(DirtyWorkspaceError):
            prepare_workspace(handle, entry, vcs=GitVcs())

    assert git_cli.run(clone_repo, "rev-parse", "HEAD") == before


def test_prepare_real_clone_creates_suffixed_branch(
    clone_repo: Path, git_cli: SimpleNamespace
) -> None:
    git_cli.run(clone_repo, "branch", "task-1")
    entry = WorkspaceEntry(path=str(clone_repo), repository_id="repo")

    with LockManager().acquire_lock(clone_repo, LockHolder.current("test")) as handle:
        result = prepare_workspace(handle, entry, vcs=GitVcs(), branch_name="task-1")

    assert result.branch == "task-1-2"
    assert git_cli.run(clone_repo, "rev-parse", "--abbrev-ref", "HEAD") == "task-1-2"


def test_prepare_real_repo_without_remote_skips_fetch(
    origin_repo: Path, git_cli: SimpleNamespace
) -> None:
    entry = WorkspaceEntry(path=str(origin_repo), repository_id="repo")

    with LockManager().acquire_lock(origin_repo, LockHolder.current("test")) as handle:
        result = prepare_workspace(handle, entry, vcs=GitVcs())

    assert result.fetched is False
    assert result.synced_ref == "main"