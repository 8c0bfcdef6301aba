"""Console I/O helpers for user-facing messages and prompts."""

from __future__ import annotations

import asyncio
import select as select_module
import sys
from collections.abc import Sequence

import questionary


class PromptTimeout(Exception):
    """Raised when the user does not answer a prompt in time."""


def _use_questionary() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def is_interactive() -> bool:
    """Return whether both stdin and stdout are attached to a terminal."""
    return sys.stdin.isatty() and sys.stdout.isatty()


def say(message: str) -> None:
    """Print a normal message to stdout.

    Args:
        message: Text to print.

    Returns:
        None.

    Example:
        >>> say("Hello")
        Hello
    """
    print(message)


def warn(message: str) -> None:
    """Print a warning message to stderr."""
    print(f"warning: {message}", file=sys.stderr)


def die(message: str, code: int = 1) -> None:
    """Print an error message and exit.

    Args:
        message: Error message to display.
        code: Exit code to use.

    Returns:
        None. Exits the process via ``sys.exit``.
    """
    print(f"error: {message}", file=sys.stderr)
    sys.exit(code)


def _ask(question: questionary.Question, timeout_seconds: float | None) -> object:
    if timeout_seconds is None:
        return question.ask()
    try:
        return asyncio.run(
            asyncio.wait_for(question.unsafe_ask_async(), timeout=timeout_seconds)
        )
    except asyncio.TimeoutError as exc:
        raise PromptTimeout(f"no answer within {timeout_seconds:g}s") from exc
    except KeyboardInterrupt:
        return None


def _read_line(text: str, timeout_seconds: float | None) -> str:
    if timeout_seconds is None:
        return input(text)
    sys.stdout.write(text)
    sys.stdout.flush()
    ready, _, _ = select_module.select([sys.stdin], [], [], timeout_seconds)
    if not ready:
        sys.stdout.write("\n")
        raise PromptTimeout(f"no answer within {timeout_seconds:g}s")
    return sys.stdin.readline().rstrip("\n")


def confirm(
    text: str, default: bool = False, *, timeout_seconds: float | None = None
) -> bool:
    """Prompt for a yes/no confirmation.

    Args:
        text: Prompt label shown to the user.
        default: Default answer when the user presses enter.
        timeout_seconds: Give up waiting after this many seconds.

    Returns:
        ``True`` when the user confirms.

    Raises:
        PromptTimeout: When ``timeout_seconds`` elapses without an answer.
    """
    if _use_questionary():
        response = _ask(questionary.confirm(text, default=default), timeout_seconds)
        return bool(response)
    suffix = "[Y/n]" if default else "[y/N]"
    response = _read_line(f"{text} {suffix}: ", timeout_seconds).strip().lower()
    if response == "":
        return default
    return response in {"y", "yes"}


def select(
    text: str,
    choices: Sequence[str],
    default: str | None = None,
    *,
    timeout_seconds: float | None = None,
) -> str:
    """Prompt the user to pick one of ``choices``.

    Falls back to a numbered list when no terminal is attached. Unknown
    answers fall back to ``default`` (or the first choice).
    """
    if not choices:
        raise ValueError("select requires at least one choice")
    fallback = default if default in choices else choices[0]
    if _use_questionary():
        response = _ask(
            questionary.select(text, choices=list(choices), default=fallback),
            timeout_seconds,
        )
        if response is None:
            return fallback
        return str(response)
    for index, choice in enumerate(choices, start=1):
        print(f"  {index}) {choice}")
    raw = _read_line(f"{text} [{fallback}]: ", timeout_seconds).strip()
    if raw.isdigit() and 1 <= int(raw) <= len(choices):
        return choices[int(raw) - 1]
    if raw in choices:
        return raw
    return fallback
