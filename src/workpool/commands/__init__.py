"""Command implementations exposed by the workpool CLI."""

from .list import list_workspaces
from .lock import lock_workspace, unlock_workspace
from .prepare import prepare_workspace
from .primary import set_primary
from .run import run_in_workspace
from .update import update_workspace

__all__ = [
    "list_workspaces",
    "lock_workspace",
    "prepare_workspace",
    "run_in_workspace",
    "set_primary",
    "unlock_workspace",
    "update_workspace",
]
