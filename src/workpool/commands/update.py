"""Implementation for the ``workpool update`` command."""

from __future__ import annotations

from pathlib import Path

from .. import io, log, project
from ..errors import WorkspaceError
from ..models import WorkspaceMetadataPatch

_TEXT_FIELDS = ("name", "description", "task", "branch", "plan_id", "plan_title")


def _patch_from_args(args: object) -> WorkspaceMetadataPatch:
    values = {field: getattr(args, field, None) for field in _TEXT_FIELDS}
    issues = getattr(args, "issue", None)
    if getattr(args, "clear_issues", False):
        issue_urls: list[str] | None = []
    else:
        issue_urls = list(issues) if issues else None
    return WorkspaceMetadataPatch(
        task_id=values["task"],
        branch=values["branch"],
        name=values["name"],
        description=values["description"],
        plan_id=values["plan_id"],
        plan_title=values["plan_title"],
        issue_urls=issue_urls,
    )


def update_workspace(args: object) -> None:
    """Patch the metadata stored for a workspace in the registry.

    Options left out keep their value; an empty string clears a text field
    and ``--clear-issues`` empties the issue list.

    Example:
        $ workpool update ~/workspaces/repo-task-1 --name "login fix" --description ""
    """
    patch = _patch_from_args(args)
    if not patch.model_dump(exclude_none=True):
        io.die(
            "nothing to update; pass at least one of --name, --description, --task, "
            "--branch, --plan-id, --plan-title, --issue or --clear-issues"
        )
    path = Path(str(getattr(args, "path", None) or ".")).expanduser().resolve()
    if not path.is_dir():
        io.die(f"workspace directory does not exist: {path}")
    ctx = project.resolve_project(path)
    coordinator = project.build_coordinator(ctx)
    try:
        entry = coordinator.update_metadata(path, patch)
    except WorkspaceError as exc:
        project.fail(exc)
        return
    log.success(f"updated {entry.path}")
