"""Implementation for the ``workpool list`` command."""

from __future__ import annotations

import json

from rich import box
from rich.console import Console
from rich.table import Table

from .. import project
from ..coordinator import WorkspaceStatus
from ..errors import WorkspaceError
from ..io import die, say

_FORMATS = {"table", "json"}


def _holder(status: WorkspaceStatus) -> str:
    if status.lock is None:
        return "-"
    record = status.lock
    return f"{record.pid}@{record.hostname} ({record.type})"


def _status_payload(status: WorkspaceStatus) -> dict[str, object]:
    payload = status.entry.registry_payload()
    payload["lockState"] = status.state
    if status.lock is not None:
        payload["lock"] = status.lock.lock_payload()
    if status.stale_reason:
        payload["staleReason"] = status.stale_reason
    return payload


def list_workspaces(args: object) -> None:
    """List registered workspaces with their live lock state.

    Args:
        args: CLI argument object with ``all``, ``format``, ``repo`` and
            ``prune`` attributes. Entries whose directory is gone are
            dropped from the registry unless ``prune`` is false.

    Example:
        $ workpool list --format json
    """
    format_value = str(getattr(args, "format", "table") or "table").lower()
    if format_value not in _FORMATS:
        die(f"unsupported format: {format_value}")

    ctx = project.resolve_project()
    coordinator = project.build_coordinator(ctx)
    repository_id = None
    if not getattr(args, "all", False):
        repository_id = getattr(args, "repo", None) or ctx.repository_id
    try:
        if getattr(args, "prune", True):
            coordinator.prune_missing(repository_id)
        statuses = coordinator.list_with_live_lock_status(repository_id)
    except WorkspaceError as exc:
        project.fail(exc)
        return

    if format_value == "json":
        say(json.dumps([_status_payload(status) for status in statuses], indent=2))
        return

    if not statuses:
        say("No workspaces found.")
        return

    table = Table(title="Workspaces", box=box.SIMPLE)
    table.add_column("Path", overflow="fold")
    table.add_column("Task")
    table.add_column("Primary", justify="center")
    table.add_column("Lock", justify="center")
    table.add_column("Holder")
    table.add_column("Updated")
    for status in statuses:
        entry = status.entry
        state = status.state
        if status.stale_reason:
            state = f"{state} ({status.stale_reason})"
        table.add_row(
            entry.path,
            entry.task_id or "-",
            "yes" if entry.primary else "",
            state,
            _holder(status),
            entry.updated_at or "-",
        )
    Console().print(table)
