"""Leveled console output for workpool.

Messages about one workspace may pass its path as ``workspace``; they are
prefixed with the workspace directory name so that selection, preparation
and the wrapped command stay attributable when several runs share a
terminal.
"""

from __future__ import annotations

import os
from enum import IntEnum
from pathlib import Path

from rich.console import Console
from rich.text import Text

LEVEL_ENV_VAR = "WORKPOOL_LOG_LEVEL"
NO_COLOR_ENV_VARS = ("NO_COLOR", "WORKPOOL_NO_COLOR")


class LogLevel(IntEnum):
    TRACE = 10
    DEBUG = 20
    INFO = 30
    SUCCESS = 35
    WARNING = 40
    ERROR = 50

    @property
    def style(self) -> str:
        return _STYLES.get(self, "")


_STYLES = {
    LogLevel.TRACE: "dim",
    LogLevel.DEBUG: "cyan",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "bold red",
}
_ALIASES = {"warn": LogLevel.WARNING}
LEVEL_NAMES = tuple(level.name.lower() for level in LogLevel)

_configured_level: LogLevel | None = None
_no_color_override: bool | None = None


def parse_level(value: str | None) -> LogLevel:
    """Map a level name to a ``LogLevel``; blank or unknown names mean INFO.

    Example:
        >>> parse_level(" Warn ")
        <LogLevel.WARNING: 40>
        >>> parse_level("chatty")
        <LogLevel.INFO: 30>
    """
    name = (value or "").strip().lower()
    if name in _ALIASES:
        return _ALIASES[name]
    try:
        return LogLevel[name.upper()]
    except KeyError:
        return LogLevel.INFO


def configured_level() -> LogLevel:
    global _configured_level
    if _configured_level is None:
        _configured_level = parse_level(os.environ.get(LEVEL_ENV_VAR))
    return _configured_level


def set_level(value: str | None) -> None:
    global _configured_level
    _configured_level = parse_level(value)


def set_no_color(value: bool) -> None:
    """Force colorless output regardless of the environment."""
    global _no_color_override
    _no_color_override = value


def is_enabled(level: LogLevel) -> bool:
    return level >= configured_level()


def _no_color() -> bool:
    if _no_color_override is not None:
        return _no_color_override
    return any(os.environ.get(name) for name in NO_COLOR_ENV_VARS)


def emit(level: LogLevel, message: str, *, workspace: Path | str | None = None) -> None:
    """Print ``message`` when ``level`` is enabled.

    Warnings and errors go to stderr; everything else to stdout.
    """
    if not is_enabled(level):
        return
    text = Text()
    if workspace is not None:
        text.append(f"[{Path(workspace).name}] ", style="dim")
    text.append(message, style=level.style)
    console = Console(
        stderr=level >= LogLevel.WARNING,
        soft_wrap=True,
        highlight=False,
        no_color=_no_color(),
    )
    console.print(text)


def trace(message: str, *, workspace: Path | str | None = None) -> None:
    emit(LogLevel.TRACE, message, workspace=workspace)


def debug(message: str, *, workspace: Path | str | None = None) -> None:
    emit(LogLevel.DEBUG, message, workspace=workspace)


def info(message: str, *, workspace: Path | str | None = None) -> None:
    emit(LogLevel.INFO, message, workspace=workspace)


def success(message: str, *, workspace: Path | str | None = None) -> None:
    emit(LogLevel.SUCCESS, message, workspace=workspace)


def warning(message: str, *, workspace: Path | str | None = None) -> None:
    emit(LogLevel.WARNING, message, workspace=workspace)


def error(message: str, *, workspace: Path | str | None = None) -> None:
    emit(LogLevel.ERROR, message, workspace=workspace)
