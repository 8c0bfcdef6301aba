"""Implementation for the ``workpool primary`` command."""

from __future__ import annotations

from pathlib import Path

from .. import log, project
from ..errors import WorkspaceError


def set_primary(args: object) -> None:
    """Mark a workspace as primary, or clear the flag with ``--off``.

    Primary workspaces are never picked for reuse.
    """
    path = Path(str(getattr(args, "path", None) or ".")).expanduser().resolve()
    primary = not bool(getattr(args, "off", False))
    ctx = project.resolve_project(path)
    coordinator = project.build_coordinator(ctx)
    try:
        entry = coordinator.set_primary(path, primary)
    except WorkspaceError as exc:
        project.fail(exc)
        return
    state = "primary" if entry.primary else "not primary"
    log.success(f"{entry.path} is now {state}")
