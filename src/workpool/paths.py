"""Path helpers for locating workpool data directories and files."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_dir

WORKPOOL_APP_NAME = "workpool"
LOCK_FILENAME = ".workpool.lock"
REGISTRY_FILENAME = "workspaces.json"
WORKSPACES_DIRNAME = "workspaces"
PROJECT_CONFIG_DIRNAME = ".workpool"
PROJECT_CONFIG_FILENAME = "config.json"
INSTALLED_CONFIG_FILENAME = "config.user.json"
REGISTRY_ENV_VAR = "WORKPOOL_REGISTRY"


def workpool_data_dir() -> Path:
    """Return the base workpool data directory.

    Example:
        >>> isinstance(workpool_data_dir(), Path)
        True
    """
    return Path(user_data_dir(WORKPOOL_APP_NAME))


def default_registry_path() -> Path:
    """Return the registry file path, honoring ``WORKPOOL_REGISTRY``."""
    override = os.environ.get(REGISTRY_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return workpool_data_dir() / REGISTRY_FILENAME


def registry_lock_path(registry_path: Path) -> Path:
    """Return the advisory lock file guarding registry rewrites.

    Example:
        >>> registry_lock_path(Path("/data/workspaces.json")).name
        '.workspaces.json.lock'
    """
    return registry_path.with_name(f".{registry_path.name}.lock")


def default_clone_location() -> Path:
    """Return the directory new workspaces are created under by default."""
    return workpool_data_dir() / WORKSPACES_DIRNAME


def lock_file_path(workspace_path: Path) -> Path:
    """Return the lock file for a workspace.

    Example:
        >>> lock_file_path(Path("/ws/repo-1")).as_posix()
        '/ws/repo-1/.workpool.lock'
    """
    return workspace_path / LOCK_FILENAME


def project_config_path(repo_root: Path) -> Path:
    """Return the repository-scoped config file path.

    Example:
        >>> project_config_path(Path("/repo")).as_posix()
        '/repo/.workpool/config.json'
    """
    return repo_root / PROJECT_CONFIG_DIRNAME / PROJECT_CONFIG_FILENAME


def installed_config_path() -> Path:
    """Return the path to the installed defaults config file."""
    return workpool_data_dir() / INSTALLED_CONFIG_FILENAME


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
