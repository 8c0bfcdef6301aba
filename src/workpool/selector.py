"""Pick a reusable workspace or decide that a new one is needed."""

from __future__ import annotations

from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass
from pathlib import Path

from . import log
from .errors import LockIoError, StaleLockDeclinedError
from .locks import ConfirmCallback, LockManager, ReclaimMode
from .models import WorkspaceEntry
from .registry import Registry, normalize_path

OrderPolicy = Callable[[Sequence[WorkspaceEntry]], Sequence[WorkspaceEntry]]


@dataclass(frozen=True)
class Reuse:
    """An existing workspace that is free to lock."""

    entry: WorkspaceEntry
    cleared_stale_lock: bool = False


@dataclass(frozen=True)
class New:
    """No reusable workspace; the caller should create one."""


Selection = Reuse | New


def registry_order(entries: Sequence[WorkspaceEntry]) -> Sequence[WorkspaceEntry]:
    return entries


class WorkspaceSelector:
    """First-fit selection over a repository's registered workspaces.

    Primary workspaces are never offered. Entries are walked in ``order``
    (registry order by default): an unlocked workspace is returned at once,
    a validly locked one is skipped, and a stale lock is reclaimed according
    to ``mode`` before the workspace is offered. Running out of candidates is
    not an error; the result is ``New``.
    """

    def __init__(
        self,
        registry: Registry,
        locks: LockManager,
        *,
        mode: ReclaimMode = "non-interactive",
        confirm: ConfirmCallback | None = None,
        prompt_timeout_seconds: float | None = None,
        order: OrderPolicy = registry_order,
    ) -> None:
        self.registry = registry
        self.locks = locks
        self.mode = mode
        self.confirm = confirm
        self.prompt_timeout_seconds = prompt_timeout_seconds
        self.order = order

    def select_workspace(
        self,
        repository_id: str,
        *,
        exclude: Collection[str | Path] = (),
        prefer_new: bool = False,
    ) -> Selection:
        if prefer_new:
            log.debug("new workspace requested; skipping reuse")
            return New()
        excluded = {normalize_path(path) for path in exclude}
        candidates = [
            entry
            for entry in self.registry.list(repository_id)
            if not entry.primary and normalize_path(entry.path) not in excluded
        ]
        for entry in self.order(candidates):
            selection = self._consider(entry)
            if selection is not None:
                return selection
        log.debug(f"no reusable workspace for {repository_id}")
        return New()

    def _consider(self, entry: WorkspaceEntry) -> Reuse | None:
        path = entry.workspace_path
        if not path.is_dir():
            log.debug(f"skipping {path}: directory is missing")
            return None
        record = self.locks.get_lock_info(path)
        if record is None and not self.locks.has_lock_file(path):
            return Reuse(entry)
        if record is not None and not self.locks.is_stale(record):
            log.debug(f"skipping {path}: locked by {record.describe()}")
            return None
        try:
            reclaimed = self.locks.reclaim(
                path,
                self.mode,
                confirm=self.confirm,
                timeout_seconds=self.prompt_timeout_seconds,
            )
        except StaleLockDeclinedError as exc:
            log.info(str(exc))
            return None
        except LockIoError as exc:
            log.warning(f"could not reclaim stale lock on {path}: {exc}")
            return None
        if not reclaimed:
            return None
        return Reuse(entry, cleared_stale_lock=True)
