"""Command-line interface for workpool."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Annotated

import typer

from . import __version__
from . import log as workpool_log
from .commands import list_workspaces as list_cmd
from .commands import lock_workspace as lock_cmd
from .commands import prepare_workspace as prepare_cmd
from .commands import run_in_workspace as run_cmd
from .commands import set_primary as primary_cmd
from .commands import unlock_workspace as unlock_cmd
from .commands import update_workspace as update_cmd

app = typer.Typer(
    name="workpool",
    help="Coordinate reusable, locked workspaces for coding agents.",
    no_args_is_help=True,
    add_completion=False,
)


def _validate_log_level(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in workpool_log.LEVEL_NAMES:
        choices = ", ".join(workpool_log.LEVEL_NAMES)
        raise typer.BadParameter(f"expected one of: {choices}")
    return normalized


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"workpool {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            callback=_validate_log_level,
            help="Log level: trace, debug, info, success, warning, error.",
        ),
    ] = None,
    no_color: Annotated[
        bool, typer.Option("--no-color", help="Disable colored output.")
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version", callback=_version_callback, is_eager=True, help="Show version."
        ),
    ] = False,
) -> None:
    if log_level:
        workpool_log.set_level(log_level)
    if no_color:
        workpool_log.set_no_color(True)


@app.command("list")
def list_command(
    all_repos: Annotated[
        bool, typer.Option("--all", help="List workspaces for every repository.")
    ] = False,
    format: Annotated[
        str, typer.Option("--format", help="Output format: table or json.")
    ] = "table",
    repo: Annotated[
        str | None,
        typer.Option("--repo", help="Repository id to list (defaults to the current repo)."),
    ] = None,
    prune: Annotated[
        bool,
        typer.Option(
            "--prune/--no-prune",
            help="Drop entries whose workspace directory no longer exists.",
        ),
    ] = True,
) -> None:
    """List registered workspaces and their live lock state."""
    list_cmd(SimpleNamespace(all=all_repos, format=format, repo=repo, prune=prune))


@app.command("lock")
def lock_command(
    path: Annotated[str, typer.Argument(help="Workspace path.")] = ".",
    available: Annotated[
        bool,
        typer.Option(
            "--available", "-a", help="Lock the first free workspace and print its path."
        ),
    ] = False,
    create: Annotated[
        bool,
        typer.Option("--create", "-c", help="With --available, create one if none is free."),
    ] = False,
) -> None:
    """Take a persistent lock on a workspace."""
    lock_cmd(SimpleNamespace(path=path, available=available, create=create))


@app.command("unlock")
def unlock_command(
    path: Annotated[str, typer.Argument(help="Workspace path.")] = ".",
    force: Annotated[
        bool, typer.Option("--force", help="Remove a lock held by a live process.")
    ] = False,
) -> None:
    """Remove the lock on a workspace."""
    unlock_cmd(SimpleNamespace(path=path, force=force))


@app.command("primary")
def primary_command(
    path: Annotated[str, typer.Argument(help="Workspace path.")] = ".",
    off: Annotated[bool, typer.Option("--off", help="Clear the primary flag.")] = False,
) -> None:
    """Mark a workspace as primary so it is never reused."""
    primary_cmd(SimpleNamespace(path=path, off=off))


@app.command("update")
def update_command(
    path: Annotated[str, typer.Argument(help="Workspace path.")] = ".",
    name: Annotated[
        str | None, typer.Option("--name", help="Workspace name (empty string clears).")
    ] = None,
    description: Annotated[
        str | None,
        typer.Option("--description", help="Workspace description (empty string clears)."),
    ] = None,
    task: Annotated[str | None, typer.Option("--task", help="Task id.")] = None,
    branch: Annotated[str | None, typer.Option("--branch", help="Branch name.")] = None,
    plan_id: Annotated[str | None, typer.Option("--plan-id", help="Linked plan id.")] = None,
    plan_title: Annotated[
        str | None, typer.Option("--plan-title", help="Linked plan title.")
    ] = None,
    issue: Annotated[
        list[str] | None, typer.Option("--issue", help="Issue URL; repeat for several.")
    ] = None,
    clear_issues: Annotated[
        bool, typer.Option("--clear-issues", help="Remove all issue URLs.")
    ] = False,
) -> None:
    """Update the metadata recorded for a workspace."""
    update_cmd(
        SimpleNamespace(
            path=path,
            name=name,
            description=description,
            task=task,
            branch=branch,
            plan_id=plan_id,
            plan_title=plan_title,
            issue=issue,
            clear_issues=clear_issues,
        )
    )


@app.command("prepare")
def prepare_command(
    path: Annotated[str, typer.Argument(help="Workspace path.")] = ".",
    base: Annotated[
        str | None, typer.Option("--base", help="Ref to sync to (default branch if omitted).")
    ] = None,
    task: Annotated[
        str | None, typer.Option("--task", help="Task id passed to update commands.")
    ] = None,
) -> None:
    """Lock, clean-check, sync, and update a workspace, then release it."""
    prepare_cmd(SimpleNamespace(path=path, base=base, task=task))


@app.command("run")
def run_command(
    command: Annotated[
        list[str] | None, typer.Argument(help="Command to run, after '--'.", metavar="CMD...")
    ] = None,
    base: Annotated[
        str | None, typer.Option("--base", help="Ref to sync to (default branch if omitted).")
    ] = None,
    task: Annotated[str | None, typer.Option("--task", help="Task id.")] = None,
    non_interactive: Annotated[
        bool,
        typer.Option("--non-interactive", help="Never prompt; fail instead."),
    ] = False,
    new: Annotated[
        bool, typer.Option("--new", help="Always create a fresh workspace.")
    ] = False,
) -> None:
    """Run a command in a reusable workspace, locking it for the duration."""
    code = run_cmd(
        SimpleNamespace(
            command=command or [],
            base=base,
            task=task,
            non_interactive=non_interactive,
            new=new,
        )
    )
    raise typer.Exit(code or 0)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
