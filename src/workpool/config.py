"""Configuration helpers for workpool.

Reads the repository-scoped ``.workpool/config.json`` layered over the
installed defaults ``config.user.json``, validates the merged payload with
Pydantic models, and resolves the settings the coordinator consumes.

Example:
    >>> from workpool.config import utc_now
    >>> utc_now().endswith("Z")
    True
"""

from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

from pydantic import BaseModel, ValidationError

from . import paths
from .io import die
from .models import WorkpoolConfig


def utc_now() -> str:
    """Return the current UTC timestamp in ISO-8601 format.

    Returns:
        UTC timestamp like ``2026-01-18T12:34:56Z``.
    """
    now = dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


def load_json(path: Path) -> dict | None:
    """Load a JSON file if it exists.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed payload as a dict, or ``None`` if the file does not exist.

    Example:
        >>> from pathlib import Path
        >>> load_json(Path("missing.json")) is None
        True
    """
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json(path: Path, payload: dict | BaseModel) -> None:
    """Write a JSON payload to disk.

    Args:
        path: Path to the JSON file to write.
        payload: Dict or Pydantic model to serialize.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True, exclude_none=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")


def merge_payloads(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` onto ``base``.

    Nested dicts merge key by key; any other value in ``override`` replaces
    the base value wholesale (lists are not concatenated).

    Example:
        >>> merge_payloads({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}, "b": [1]})
        {'a': {'x': 1, 'y': 3}, 'b': [1]}
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_payloads(current, value)
        else:
            merged[key] = value
    return merged


def parse_config(payload: dict, source: Path | str | None = None) -> WorkpoolConfig:
    """Validate a config payload.

    Example:
        >>> parse_config({"workspace": {"staleLockHours": 12}}).workspace.stale_lock_hours
        12.0
    """
    try:
        return WorkpoolConfig.model_validate(payload)
    except ValidationError as exc:
        location = f" at {source}" if source else ""
        die(f"invalid workpool config{location}:\n{exc}")


def _read_config_payload(path: Path) -> dict:
    try:
        payload = load_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        die(f"failed to read workpool config at {path}: {exc}")
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        die(f"workpool config at {path} must be a JSON object")
    return payload


def load_config(
    repo_root: Path | None = None,
    *,
    installed_path: Path | None = None,
) -> WorkpoolConfig:
    """Load the effective config for a repository.

    Args:
        repo_root: Repository root holding an optional ``.workpool/config.json``.
        installed_path: Override for the installed defaults file.

    Returns:
        Validated ``WorkpoolConfig``; defaults when no file exists.
    """
    defaults_path = installed_path or paths.installed_config_path()
    payload = _read_config_payload(defaults_path)
    source: Path | None = defaults_path if payload else None
    if repo_root is not None:
        project_path = paths.project_config_path(repo_root)
        project_payload = _read_config_payload(project_path)
        if project_payload:
            payload = merge_payloads(payload, project_payload)
            source = project_path
    return parse_config(payload, source)


def resolve_registry_path(config_payload: WorkpoolConfig) -> Path:
    """Resolve the registry file from config, env, or the data dir."""
    configured = config_payload.workspace.registry_path
    if configured and configured.strip():
        return Path(configured.strip()).expanduser()
    return paths.default_registry_path()


def resolve_clone_location(
    config_payload: WorkpoolConfig, repo_root: Path | None = None
) -> Path:
    """Resolve the directory new workspaces are created under.

    Relative locations resolve against ``repo_root``.
    """
    configured = config_payload.workspace.clone_location
    if not configured or not configured.strip():
        return paths.default_clone_location()
    location = Path(configured.strip()).expanduser()
    if not location.is_absolute() and repo_root is not None:
        location = (repo_root / location).resolve()
    return location


def resolve_git_path(config_payload: WorkpoolConfig | None = None) -> str:
    """Resolve the git executable path from config."""
    if config_payload is None:
        return "git"
    return config_payload.git.path or "git"
