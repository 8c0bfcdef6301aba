"""Workspace lock files.

A workspace is locked by a JSON record in ``.workpool.lock`` at its root.
The file is created with ``O_CREAT | O_EXCL`` so exactly one process wins a
race; its presence is the ground truth for whether a workspace is in use.
Staleness is recomputed on every read and never persisted.

Exclusive-create is only as strong as the filesystem underneath it. On
network filesystems with weak ``O_EXCL`` semantics two hosts can both
believe they won; that is a known residual risk.

Example:
    >>> import datetime as dt
    >>> record = LockRecord(
    ...     pid=1, hostname="elsewhere", started_at=dt.datetime(2020, 1, 1)
    ... )
    >>> stale_reason(record, dt.datetime(2020, 1, 3, tzinfo=dt.timezone.utc))
    'older than 24h'
"""

from __future__ import annotations

import datetime as dt
import json
import os
import signal
import socket
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal

from pydantic import ValidationError

from . import io, log, paths
from .errors import AlreadyLockedError, LockIoError, StaleLockDeclinedError
from .models import (
    DEFAULT_STALE_LOCK_HOURS,
    SUPPORTED_LOCK_VERSIONS,
    LockRecord,
    LockType,
)

ReclaimMode = Literal["interactive", "non-interactive"]
RECLAIM_MODES = ("interactive", "non-interactive")
DEFAULT_STALE_THRESHOLD = dt.timedelta(hours=DEFAULT_STALE_LOCK_HOURS)

ConfirmCallback = Callable[[str, float | None], bool]
PidCheck = Callable[[int], bool]

_HANDLED_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if sig
)


def local_hostname() -> str:
    return socket.gethostname()


def pid_alive(pid: int) -> bool:
    """Return whether ``pid`` names a live process on this host.

    Example:
        >>> pid_alive(os.getpid())
        True
        >>> pid_alive(0)
        False
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _utc_now() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


@dataclass(frozen=True)
class LockHolder:
    """Identity written into a lock record."""

    pid: int
    hostname: str
    command: str = ""
    type: LockType = "pid"

    @classmethod
    def current(cls, command: str = "", *, lock_type: LockType = "pid") -> LockHolder:
        if not command:
            command = " ".join(sys.argv) or "workpool"
        return cls(pid=os.getpid(), hostname=local_hostname(), command=command, type=lock_type)

    def record(self, started_at: dt.datetime) -> LockRecord:
        return LockRecord(
            pid=self.pid,
            command=self.command,
            started_at=started_at,
            hostname=self.hostname,
            type=self.type,
        )


def stale_reason(
    record: LockRecord,
    now: dt.datetime,
    threshold: dt.timedelta = DEFAULT_STALE_THRESHOLD,
    hostname: str | None = None,
    *,
    pid_check: PidCheck = pid_alive,
) -> str | None:
    """Return why ``record`` is stale, or ``None`` when it is still valid.

    The pid rule only applies to ``pid`` locks written on this host; a remote
    holder's liveness cannot be observed, so cross-host locks age out by the
    threshold alone. ``persistent`` locks skip the pid rule but still age out.
    """
    if record.version not in SUPPORTED_LOCK_VERSIONS:
        return f"unsupported lock version {record.version}"
    local = hostname if hostname is not None else local_hostname()
    if record.type == "pid" and record.hostname == local and not pid_check(record.pid):
        return f"process {record.pid} is not running"
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    if now - record.started_at > threshold:
        hours = threshold.total_seconds() / 3600
        return f"older than {hours:g}h"
    return None


def is_stale(
    record: LockRecord,
    now: dt.datetime,
    threshold: dt.timedelta = DEFAULT_STALE_THRESHOLD,
    hostname: str | None = None,
    *,
    pid_check: PidCheck = pid_alive,
) -> bool:
    """Return whether a lock record no longer protects its workspace."""
    return stale_reason(record, now, threshold, hostname, pid_check=pid_check) is not None


def _read_record(lock_path: Path) -> LockRecord | None:
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        log.warning(f"cannot read lock file {lock_path}: {exc}")
        return None
    try:
        return LockRecord.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        log.warning(f"ignoring unparsable lock file {lock_path}: {exc}")
        return None


def _same_record(left: LockRecord | None, right: LockRecord | None) -> bool:
    if left is None or right is None:
        return False
    return left.lock_payload() == right.lock_payload()


def _default_confirm(text: str, timeout_seconds: float | None) -> bool:
    return io.confirm(text, default=False, timeout_seconds=timeout_seconds)


class LockHandle:
    """Proof that the caller holds a workspace lock.

    ``release`` is the only release path; leaving the ``with`` block, an
    exception, and SIGINT/SIGTERM all go through it. Releasing twice is a
    no-op.
    """

    def __init__(self, manager: LockManager, workspace_path: Path, record: LockRecord) -> None:
        self.manager = manager
        self.workspace_path = workspace_path
        self.record = record
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def holds(self, workspace_path: Path) -> bool:
        """Return whether this handle is live and guards ``workspace_path``."""
        if self._released:
            return False
        return _resolve(self.workspace_path) == _resolve(workspace_path)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.manager._release_handle(self)

    def __enter__(self) -> LockHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"LockHandle({self.workspace_path}, {state})"


def _resolve(path: Path) -> Path:
    try:
        return path.resolve()
    except OSError:
        return path.absolute()


_HELD_GUARD = threading.RLock()
_HELD_HANDLES: list[LockHandle] = []
_PREVIOUS_HANDLERS: dict[int, object] = {}


def held_handles() -> list[LockHandle]:
    with _HELD_GUARD:
        return list(_HELD_HANDLES)


def _on_signal(signum: int, frame: object) -> None:
    previous = _PREVIOUS_HANDLERS.get(signum, signal.SIG_DFL)
    for handle in held_handles():
        try:
            handle.release()
        except LockIoError as exc:
            log.warning(f"failed to release {handle.workspace_path}: {exc}")
    if previous == signal.SIG_IGN:
        return
    if callable(previous):
        previous(signum, frame)
        return
    if signum == signal.SIGINT:
        raise KeyboardInterrupt
    raise SystemExit(128 + signum)


def _install_signal_handlers() -> None:
    if threading.current_thread() is not threading.main_thread():
        log.debug("not on the main thread; lock signal cleanup disabled")
        return
    for signum in _HANDLED_SIGNALS:
        if signum in _PREVIOUS_HANDLERS:
            continue
        _PREVIOUS_HANDLERS[signum] = signal.getsignal(signum)
        signal.signal(signum, _on_signal)


def _restore_signal_handlers() -> None:
    if threading.current_thread() is not threading.main_thread():
        return
    for signum, previous in list(_PREVIOUS_HANDLERS.items()):
        signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        _PREVIOUS_HANDLERS.pop(signum, None)


def _track(handle: LockHandle, *, install: bool) -> None:
    with _HELD_GUARD:
        _HELD_HANDLES.append(handle)
        if install and len(_HELD_HANDLES) == 1:
            _install_signal_handlers()


def _untrack(handle: LockHandle) -> None:
    with _HELD_GUARD:
        if handle in _HELD_HANDLES:
            _HELD_HANDLES.remove(handle)
        if not _HELD_HANDLES and _PREVIOUS_HANDLERS:
            _restore_signal_handlers()


class LockManager:
    """Acquire, inspect, release, and reclaim workspace lock files."""

    def __init__(
        self,
        *,
        stale_threshold: dt.timedelta = DEFAULT_STALE_THRESHOLD,
        hostname: str | None = None,
        clock: Callable[[], dt.datetime] = _utc_now,
        pid_check: PidCheck = pid_alive,
        install_signal_handlers: bool = True,
    ) -> None:
        self.stale_threshold = stale_threshold
        self.hostname = hostname or local_hostname()
        self.clock = clock
        self.pid_check = pid_check
        self.install_signal_handlers = install_signal_handlers

    def acquire_lock(self, workspace_path: Path, holder: LockHolder) -> LockHandle:
        """Atomically create the lock record for ``workspace_path``.

        Raises:
            AlreadyLockedError: A record already exists, stale or not.
            LockIoError: The record could not be created or written.
        """
        lock_path = paths.lock_file_path(workspace_path)
        # lock files store startedAt to the second
        record = holder.record(self.clock().replace(microsecond=0))
        payload = json.dumps(record.lock_payload(), indent=2) + "\n"
        try:
            fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError as exc:
            existing = _read_record(lock_path)
            raise AlreadyLockedError(
                workspace_path, existing.describe() if existing else None
            ) from exc
        except OSError as exc:
            raise LockIoError(workspace_path, str(exc)) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            lock_path.unlink(missing_ok=True)
            raise LockIoError(workspace_path, str(exc)) from exc
        log.debug(f"locked {workspace_path} ({record.describe()})")
        lock_handle = LockHandle(self, workspace_path, record)
        # persistent locks outlive this process, so signals leave them alone
        if record.type == "pid":
            _track(lock_handle, install=self.install_signal_handlers)
        return lock_handle

    def release_lock(self, workspace_path: Path) -> None:
        """Delete the lock record unconditionally; a missing file is fine."""
        lock_path = paths.lock_file_path(workspace_path)
        try:
            lock_path.unlink(missing_ok=True)
        except OSError as exc:
            raise LockIoError(workspace_path, str(exc)) from exc
        log.debug(f"released {workspace_path}")

    def _release_handle(self, handle: LockHandle) -> None:
        try:
            current = _read_record(paths.lock_file_path(handle.workspace_path))
            if current is None or _same_record(current, handle.record):
                self.release_lock(handle.workspace_path)
            else:
                log.warning(
                    f"lock on {handle.workspace_path} now belongs to "
                    f"{current.describe()}; leaving it in place"
                )
        finally:
            _untrack(handle)

    def get_lock_info(self, workspace_path: Path) -> LockRecord | None:
        return _read_record(paths.lock_file_path(workspace_path))

    def has_lock_file(self, workspace_path: Path) -> bool:
        return paths.lock_file_path(workspace_path).exists()

    def stale_reason(self, record: LockRecord, now: dt.datetime | None = None) -> str | None:
        return stale_reason(
            record,
            now or self.clock(),
            self.stale_threshold,
            self.hostname,
            pid_check=self.pid_check,
        )

    def is_stale(self, record: LockRecord, now: dt.datetime | None = None) -> bool:
        return self.stale_reason(record, now) is not None

    def reclaim(
        self,
        workspace_path: Path,
        mode: ReclaimMode,
        *,
        confirm: ConfirmCallback | None = None,
        timeout_seconds: float | None = None,
    ) -> bool:
        """Remove a stale lock record.

        In ``interactive`` mode the user is asked first and an unanswered
        prompt counts as a refusal. A valid record is never removed.

        Returns:
            ``True`` when the record was deleted, ``False`` when there was no
            stale record to delete.

        Raises:
            StaleLockDeclinedError: The user refused or did not answer.
        """
        if mode not in RECLAIM_MODES:
            raise ValueError(f"unknown reclaim mode: {mode!r}")
        lock_path = paths.lock_file_path(workspace_path)
        record = _read_record(lock_path)
        if record is None:
            if not lock_path.exists():
                return False
            reason = "lock file is unreadable"
        else:
            reason = self.stale_reason(record)
            if reason is None:
                return False

        if mode == "interactive":
            holder = record.describe() if record else "unknown holder"
            prompt = f"Lock on {workspace_path} held by {holder} looks stale ({reason}). Remove it?"
            ask = confirm or _default_confirm
            try:
                accepted = ask(prompt, timeout_seconds)
            except io.PromptTimeout as exc:
                raise StaleLockDeclinedError(workspace_path, "no answer") from exc
            if not accepted:
                raise StaleLockDeclinedError(workspace_path)

        if record is not None and not _same_record(_read_record(lock_path), record):
            log.debug(f"lock on {workspace_path} changed while reclaiming; skipping")
            return False
        self.release_lock(workspace_path)
        log.warning(f"reclaimed stale lock on {workspace_path} ({reason})")
        return True
