"""Facade tying registry, locks, selection, creation, and preparation together.

The pipeline is strictly select, lock, prepare, use, release. Lock files are
the only authority on who holds a workspace; the registry's ``lockedBy``
field is refreshed after each lock operation succeeds and is otherwise just
a hint for listings.
"""

from __future__ import annotations

import os
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from . import exec as exec_util
from . import log
from .creator import WorkspaceCreator
from .errors import (
    AlreadyLockedError,
    RegistryIoError,
    RegistryReadFailedError,
    UnexpectedStateError,
)
from .locks import ConfirmCallback, LockHandle, LockHolder, LockManager, ReclaimMode
from .models import LockRecord, UpdateCommand, WorkspaceEntry, WorkspaceMetadataPatch
from .preparer import PrepareResult, prepare_workspace
from .registry import Registry, normalize_path
from .selector import OrderPolicy, Reuse, WorkspaceSelector, registry_order
from .vcs import Vcs

MAX_CREATE_ATTEMPTS = 3


@dataclass
class AcquiredWorkspace:
    """A workspace whose lock the caller now holds."""

    entry: WorkspaceEntry
    handle: LockHandle
    created: bool = False
    cleared_stale_lock: bool = False

    @property
    def path(self) -> Path:
        return self.entry.workspace_path

    def __enter__(self) -> AcquiredWorkspace:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.handle.release()


@dataclass(frozen=True)
class WorkspaceStatus:
    """Registry entry paired with its live lock state."""

    entry: WorkspaceEntry
    lock: LockRecord | None = None
    stale_reason: str | None = None
    unreadable_lock: bool = False

    @property
    def state(self) -> str:
        if self.lock is None and not self.unreadable_lock:
            return "free"
        if self.stale_reason is not None:
            return "stale"
        return "locked"


@dataclass
class WorkspaceCoordinator:
    registry: Registry
    locks: LockManager
    creator: WorkspaceCreator | None = None
    vcs: Vcs | None = None
    runner: exec_util.CommandRunner | None = None
    mode: ReclaimMode = "non-interactive"
    confirm: ConfirmCallback | None = None
    prompt_timeout_seconds: float | None = None
    update_commands: Sequence[UpdateCommand] = field(default_factory=tuple)
    order: OrderPolicy = registry_order

    @property
    def selector(self) -> WorkspaceSelector:
        return WorkspaceSelector(
            self.registry,
            self.locks,
            mode=self.mode,
            confirm=self.confirm,
            prompt_timeout_seconds=self.prompt_timeout_seconds,
            order=self.order,
        )

    def _mirror_lock(
        self, path: Path, record: LockRecord | None, *, task_id: str | None = None
    ) -> WorkspaceEntry | None:
        try:
            if self.registry.get(path) is None:
                return None
            return self.registry.refresh_lock_cache(path, record, task_id=task_id)
        except (RegistryIoError, RegistryReadFailedError) as exc:
            log.warning(f"could not update lock cache for {path}: {exc}")
            return None

    def select_or_create(
        self,
        repository_id: str,
        task_id: str,
        *,
        holder: LockHolder | None = None,
        exclude: Collection[str | Path] = (),
        prefer_new: bool = False,
    ) -> AcquiredWorkspace:
        """Lock a reusable workspace, or create and lock a new one.

        A candidate that another process locks first, reused or freshly
        created, is excluded and selection runs again. Losing the race for
        ``MAX_CREATE_ATTEMPTS`` created workspaces re-raises the last
        ``AlreadyLockedError``.

        Raises:
            RegistryReadFailedError: The registry cannot be read.
            AlreadyLockedError: Every created workspace was taken by a rival.
            UnexpectedStateError: Nothing is reusable and no creator is set.
        """
        active_holder = holder or LockHolder.current()
        excluded = {normalize_path(path) for path in exclude}
        creations = 0
        while True:
            selection = self.selector.select_workspace(
                repository_id, exclude=excluded, prefer_new=prefer_new
            )
            if isinstance(selection, Reuse):
                candidate, created = selection.entry, False
                cleared = selection.cleared_stale_lock
            else:
                if self.creator is None:
                    raise UnexpectedStateError(
                        f"no reusable workspace for {repository_id} and no creator configured"
                    )
                candidate = self.creator.create_workspace(repository_id, task_id)
                created, cleared = True, False
                creations += 1
            path = candidate.workspace_path
            try:
                handle = self.locks.acquire_lock(path, active_holder)
            except AlreadyLockedError:
                excluded.add(normalize_path(path))
                if created and creations >= MAX_CREATE_ATTEMPTS:
                    raise
                log.debug(f"lost the race for {path}; selecting again")
                continue
            entry = self._mirror_lock(path, handle.record, task_id=task_id) or candidate
            if created:
                log.info("created workspace", workspace=path)
            else:
                log.info("reusing workspace", workspace=path)
            return AcquiredWorkspace(
                entry=entry,
                handle=handle,
                created=created,
                cleared_stale_lock=cleared,
            )

    def lock_available(
        self,
        repository_id: str,
        *,
        holder: LockHolder | None = None,
        task_id: str | None = None,
    ) -> AcquiredWorkspace | None:
        """Lock the first reusable workspace without ever creating one.

        Returns:
            The locked workspace, or ``None`` when every candidate is primary,
            locked, or missing.
        """
        active_holder = holder or LockHolder.current()
        excluded: set[str] = set()
        while True:
            selection = self.selector.select_workspace(repository_id, exclude=excluded)
            if not isinstance(selection, Reuse):
                return None
            path = selection.entry.workspace_path
            try:
                handle = self.locks.acquire_lock(path, active_holder)
            except AlreadyLockedError:
                excluded.add(normalize_path(path))
                continue
            entry = self._mirror_lock(path, handle.record, task_id=task_id) or selection.entry
            return AcquiredWorkspace(
                entry=entry, handle=handle, cleared_stale_lock=selection.cleared_stale_lock
            )

    def lock(self, path: Path, holder: LockHolder | None = None) -> LockHandle:
        """Acquire the lock on ``path`` and mirror it into the registry."""
        handle = self.locks.acquire_lock(path, holder or LockHolder.current())
        self._mirror_lock(path, handle.record)
        return handle

    def release(self, handle: LockHandle) -> None:
        """Release ``handle`` and mirror whatever lock is left on disk.

        A lock that another holder took over stays in place, so the cache
        keeps reporting it.
        """
        handle.release()
        path = handle.workspace_path
        self._mirror_lock(path, self.locks.get_lock_info(path))

    def unlock(self, path: Path, *, force: bool = False) -> bool:
        """Remove the lock on ``path``.

        A live ``pid`` lock held by another process is only removed with
        ``force``.

        Returns:
            ``True`` when a lock file was removed.
        """
        record = self.locks.get_lock_info(path)
        if record is None and not self.locks.has_lock_file(path):
            self._mirror_lock(path, None)
            return False
        if (
            record is not None
            and not force
            and record.type == "pid"
            and record.pid != os.getpid()
            and not self.locks.is_stale(record)
        ):
            error = AlreadyLockedError(path, record.describe())
            error.recovery_hint = "stop the holder or pass --force"
            raise error
        self.locks.release_lock(path)
        self._mirror_lock(path, None)
        return True

    def prepare(
        self,
        handle: LockHandle,
        base_ref: str | None = None,
        *,
        task_id: str | None = None,
        branch_name: str | None = None,
        update_commands: Sequence[UpdateCommand] | None = None,
    ) -> PrepareResult:
        entry = self.registry.get(handle.workspace_path)
        if entry is None:
            raise UnexpectedStateError(
                f"workspace {handle.workspace_path} is not registered",
                workspace_path=handle.workspace_path,
            )
        return prepare_workspace(
            handle,
            entry,
            base_ref,
            self.update_commands if update_commands is None else update_commands,
            task_id=task_id,
            branch_name=branch_name,
            vcs=self.vcs,
            runner=self.runner,
        )

    def set_primary(self, path: Path, primary: bool = True) -> WorkspaceEntry:
        return self.registry.set_primary(path, primary)

    def update_metadata(self, path: Path, patch: WorkspaceMetadataPatch) -> WorkspaceEntry:
        return self.registry.update_metadata(path, patch)

    def prune_missing(self, repository_id: str | None = None) -> list[WorkspaceEntry]:
        """Drop registry entries whose workspace directory no longer exists."""
        entries = self.registry.list(repository_id) if repository_id else self.registry.all()
        removed: list[WorkspaceEntry] = []
        for entry in entries:
            if entry.workspace_path.is_dir():
                continue
            if self.registry.remove(entry.path):
                log.warning(f"removed entry for deleted workspace {entry.path}")
                removed.append(entry)
        return removed

    def list_with_live_lock_status(self, repository_id: str | None = None) -> list[WorkspaceStatus]:
        """Return entries with lock state read from the lock files themselves."""
        entries = self.registry.list(repository_id) if repository_id else self.registry.all()
        statuses: list[WorkspaceStatus] = []
        for entry in entries:
            path = entry.workspace_path
            record = self.locks.get_lock_info(path)
            if record is None:
                unreadable = self.locks.has_lock_file(path)
                statuses.append(
                    WorkspaceStatus(
                        entry=entry,
                        stale_reason="lock file is unreadable" if unreadable else None,
                        unreadable_lock=unreadable,
                    )
                )
                continue
            statuses.append(
                WorkspaceStatus(
                    entry=entry, lock=record, stale_reason=self.locks.stale_reason(record)
                )
            )
        return statuses
