"""Durable map of repositories to known workspaces.

The registry file is a JSON object keyed by repository id, each value an
ordered list of workspace entries (creation order)::

    {"github.com/org/repo": [{"path": "/ws/repo-1", "repositoryId": ...}]}

Rewrites go through a temp file and ``os.replace`` so readers never see a
partial file, and read-modify-write cycles are serialized with an ``fcntl``
advisory lock next to the registry. The cached ``lockedBy`` field is only a
hint; lock files stay authoritative.
"""

from __future__ import annotations

import copy
import json
import os
from contextlib import contextmanager
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Callable, Iterator, Protocol, TextIO, TypeVar

from pydantic import ValidationError

from . import log, paths
from .config import utc_now
from .errors import RegistryIoError, RegistryReadFailedError, UnexpectedStateError
from .models import LockedBySummary, LockRecord, WorkspaceEntry, WorkspaceMetadataPatch

try:
    import fcntl
except ImportError:  # pragma: no cover - platform fallback
    fcntl = None

RegistryData = dict[str, list[dict]]
T = TypeVar("T")


class RegistryStore(Protocol):
    """Persistence backend for the registry payload."""

    def read(self) -> RegistryData: ...

    def update(self, mutate: Callable[[RegistryData], T]) -> T: ...


def _validate_payload(payload: object, source: Path | None) -> RegistryData:
    if not isinstance(payload, dict):
        raise RegistryReadFailedError(source, "top level must be a JSON object")
    for key, entries in payload.items():
        if not isinstance(entries, list) or not all(isinstance(item, dict) for item in entries):
            raise RegistryReadFailedError(source, f"entries for {key!r} must be a list of objects")
    return payload


class JsonFileStore:
    """Registry persisted as a single JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> RegistryData:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise RegistryReadFailedError(self.path, str(exc)) from exc
        if not raw.strip():
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RegistryReadFailedError(self.path, str(exc)) from exc
        return _validate_payload(payload, self.path)

    def update(self, mutate: Callable[[RegistryData], T]) -> T:
        with self._write_lock():
            data = self.read()
            result = mutate(data)
            self._write(data)
            return result

    @contextmanager
    def _write_lock(self) -> Iterator[None]:
        lock_path = paths.registry_lock_path(self.path)
        try:
            paths.ensure_dir(lock_path.parent)
            handle: TextIO = lock_path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise RegistryIoError(self.path, f"cannot open registry lock: {exc}") from exc
        try:
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

    def _write(self, data: RegistryData) -> None:
        temp_path: Path | None = None
        try:
            paths.ensure_dir(self.path.parent)
            with NamedTemporaryFile(
                "w",
                encoding="utf-8",
                delete=False,
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            ) as handle:
                json.dump(data, handle, indent=2)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
                temp_path = Path(handle.name)
            os.replace(temp_path, self.path)
        except OSError as exc:
            raise RegistryIoError(self.path, str(exc)) from exc
        finally:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink(missing_ok=True)


class MemoryStore:
    """In-process registry store for tests and embedding."""

    def __init__(self, data: RegistryData | None = None) -> None:
        self.data: RegistryData = copy.deepcopy(data) if data else {}

    def read(self) -> RegistryData:
        return copy.deepcopy(self.data)

    def update(self, mutate: Callable[[RegistryData], T]) -> T:
        data = self.read()
        result = mutate(data)
        self.data = data
        return result


def normalize_repository_id(value: str) -> str:
    """Return the comparison key for a repository id.

    Example:
        >>> normalize_repository_id("  GitHub.com/Org/Repo ")
        'github.com/org/repo'
    """
    return value.strip().lower()


def normalize_path(value: str | Path) -> str:
    """Return the comparison key for a workspace path."""
    path = Path(value).expanduser()
    try:
        return str(path.resolve())
    except OSError:
        return str(path.absolute())


def _parse_entry(raw: dict) -> WorkspaceEntry:
    try:
        return WorkspaceEntry.model_validate(raw)
    except ValidationError as exc:
        raise RegistryReadFailedError(None, f"invalid workspace entry: {exc}") from exc


def _find(data: RegistryData, path: str | Path) -> tuple[str, int] | None:
    target = normalize_path(path)
    for key, entries in data.items():
        for index, raw in enumerate(entries):
            if normalize_path(str(raw.get("path", ""))) == target:
                return key, index
    return None


def _apply_patch(entry: WorkspaceEntry, patch: WorkspaceMetadataPatch) -> WorkspaceEntry:
    changes: dict[str, object] = {}
    for field_name in WorkspaceMetadataPatch.model_fields:
        value = getattr(patch, field_name)
        if value is None:
            continue
        if field_name == "task_id":
            changes[field_name] = value
        elif value == "" or value == []:
            changes[field_name] = None
        else:
            changes[field_name] = value
    return entry.model_copy(update=changes)


class Registry:
    """Workspace registry over an injected ``RegistryStore``."""

    def __init__(self, store: RegistryStore, *, clock: Callable[[], str] = utc_now) -> None:
        self.store = store
        self.clock = clock

    def list(self, repository_id: str) -> list[WorkspaceEntry]:
        """Return entries for ``repository_id`` in registry order.

        Raises:
            RegistryReadFailedError: The registry cannot be read or parsed.
        """
        wanted = normalize_repository_id(repository_id)
        data = self.store.read()
        return [
            _parse_entry(raw)
            for key, entries in data.items()
            if normalize_repository_id(key) == wanted
            for raw in entries
        ]

    def all(self) -> list[WorkspaceEntry]:
        return [_parse_entry(raw) for entries in self.store.read().values() for raw in entries]

    def get(self, path: str | Path) -> WorkspaceEntry | None:
        data = self.store.read()
        location = _find(data, path)
        if location is None:
            return None
        key, index = location
        return _parse_entry(data[key][index])

    def add(self, entry: WorkspaceEntry) -> WorkspaceEntry:
        """Append ``entry`` under its repository; paths are unique registry-wide."""
        now = self.clock()
        stored = entry.model_copy(
            update={
                "path": normalize_path(entry.path),
                "created_at": entry.created_at or now,
                "updated_at": now,
            }
        )

        def mutate(data: RegistryData) -> WorkspaceEntry:
            if _find(data, stored.path) is not None:
                raise UnexpectedStateError(
                    f"workspace {stored.path} is already registered",
                    workspace_path=stored.workspace_path,
                )
            wanted = normalize_repository_id(stored.repository_id)
            key = next(
                (k for k in data if normalize_repository_id(k) == wanted),
                stored.repository_id.strip(),
            )
            data.setdefault(key, []).append(stored.registry_payload())
            return stored

        added = self.store.update(mutate)
        log.debug(f"registered workspace {added.path} for {added.repository_id}")
        return added

    def _modify(
        self, path: str | Path, change: Callable[[WorkspaceEntry], WorkspaceEntry]
    ) -> WorkspaceEntry:
        def mutate(data: RegistryData) -> WorkspaceEntry:
            location = _find(data, path)
            if location is None:
                raise UnexpectedStateError(
                    f"workspace {path} is not registered", workspace_path=Path(path)
                )
            key, index = location
            updated = change(_parse_entry(data[key][index]))
            updated = updated.model_copy(update={"updated_at": self.clock()})
            data[key][index] = updated.registry_payload()
            return updated

        return self.store.update(mutate)

    def update_metadata(self, path: str | Path, patch: WorkspaceMetadataPatch) -> WorkspaceEntry:
        """Apply a partial metadata update.

        ``None`` fields are left alone, empty strings and empty lists clear
        the field, and ``updatedAt`` is always refreshed.
        """
        return self._modify(path, lambda entry: _apply_patch(entry, patch))

    def set_primary(self, path: str | Path, primary: bool) -> WorkspaceEntry:
        return self._modify(path, lambda entry: entry.model_copy(update={"primary": primary}))

    def refresh_lock_cache(
        self,
        path: str | Path,
        record: LockRecord | None,
        *,
        task_id: str | None = None,
    ) -> WorkspaceEntry:
        """Mirror a completed lock operation into the advisory cache."""
        updates: dict[str, object] = {
            "locked_by": LockedBySummary.from_record(record) if record else None
        }
        if task_id is not None:
            updates["task_id"] = task_id
        return self._modify(path, lambda entry: entry.model_copy(update=updates))

    def remove(self, path: str | Path) -> bool:
        def mutate(data: RegistryData) -> bool:
            location = _find(data, path)
            if location is None:
                return False
            key, index = location
            del data[key][index]
            if not data[key]:
                del data[key]
            return True

        removed = self.store.update(mutate)
        if removed:
            log.debug(f"removed workspace {path} from registry")
        return removed
