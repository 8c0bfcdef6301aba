"""Run git, update commands, and the wrapped agent command.

Every child process goes through a ``CommandRunner`` so that tests can
inject a fake one. A command that is not installed yields ``None`` rather
than an exception; a timeout yields a result with exit code 124, matching
coreutils ``timeout``.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

from . import log

TIMEOUT_RETURNCODE = 124
TASK_ID_ENV_VAR = "WORKPOOL_TASK_ID"
WORKSPACE_PATH_ENV_VAR = "WORKPOOL_WORKSPACE_PATH"


@dataclass(frozen=True)
class CommandRequest:
    """One child process to run.

    ``capture_output=False`` lets the child write straight to the terminal,
    which is what update commands and ``workpool run`` want.
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    capture_output: bool = True
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Stderr when there is any, else stdout; stripped."""
        return (self.stderr or self.stdout or "").strip()


class CommandRunner(Protocol):
    def run(self, request: CommandRequest) -> CommandResult | None: ...


def _as_text(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value if isinstance(value, str) else ""


class SubprocessCommandRunner:
    """``CommandRunner`` backed by ``subprocess.run``."""

    def run(self, request: CommandRequest) -> CommandResult | None:
        where = f" (in {request.cwd})" if request.cwd else ""
        log.trace(f"$ {shlex.join(request.argv)}{where}")
        options: dict[str, object] = {"cwd": request.cwd, "env": request.env, "check": False}
        if request.capture_output:
            options.update(capture_output=True, text=True)
        if request.timeout_seconds is not None:
            options["timeout"] = request.timeout_seconds
        try:
            completed = subprocess.run(list(request.argv), **options)
        except FileNotFoundError:
            return None
        except subprocess.TimeoutExpired as exc:
            log.debug(f"{request.argv[0]} timed out after {request.timeout_seconds:g}s")
            return CommandResult(
                argv=request.argv,
                returncode=TIMEOUT_RETURNCODE,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                timed_out=True,
            )
        return CommandResult(
            argv=request.argv,
            returncode=completed.returncode,
            stdout=_as_text(completed.stdout),
            stderr=_as_text(completed.stderr),
        )


_DEFAULT_COMMAND_RUNNER: CommandRunner = SubprocessCommandRunner()


def run_with_runner(
    request: CommandRequest, *, runner: CommandRunner | None = None
) -> CommandResult | None:
    return (runner or _DEFAULT_COMMAND_RUNNER).run(request)


def shell_argv(command: str) -> tuple[str, ...]:
    """Wrap a configured update command string in the platform shell.

    Example:
        >>> shell_argv("echo hi") if os.name != "nt" else ("sh", "-c", "echo hi")
        ('sh', '-c', 'echo hi')
    """
    if os.name == "nt":
        return ("cmd", "/c", command)
    return ("sh", "-c", command)


def workspace_env(
    workspace_path: Path, task_id: str, extra: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Process environment plus ``extra`` and the task and workspace variables."""
    env = dict(os.environ)
    env.update(extra or {})
    env[TASK_ID_ENV_VAR] = task_id
    env[WORKSPACE_PATH_ENV_VAR] = str(workspace_path)
    return env
