"""Terminal logging for the merge queue.

Every line goes through ``emit``, which filters by level, styles the line for
its level and, for the long-running ``smelter run`` loop, stamps it with the
wall-clock time. Pool workers log from several threads at once, so writes
are serialized and each line is printed whole.

The level comes from ``--log-level``, then ``SMELTER_LOG_LEVEL``, and falls
back to ``info``. ``--no-color``, ``NO_COLOR`` or ``SMELTER_NO_COLOR`` turn
styling off.

Example:
    >>> parse_level(" WARN ")
    <LogLevel.WARNING: 40>
    >>> parse_level("chatty") is None
    True
"""

from __future__ import annotations

import datetime as dt
import os
import sys
import threading
from enum import IntEnum

from rich.console import Console
from rich.text import Text

LEVEL_ENV = "SMELTER_LOG_LEVEL"
NO_COLOR_ENVS = ("NO_COLOR", "SMELTER_NO_COLOR")


class LogLevel(IntEnum):
    TRACE = 10
    DEBUG = 20
    INFO = 30
    SUCCESS = 35
    WARNING = 40
    ERROR = 50


LEVEL_NAMES = ("trace", "debug", "info", "success", "warning", "error")
_ALIASES = {"warn": LogLevel.WARNING}
_STYLES = {
    LogLevel.TRACE: "dim",
    LogLevel.DEBUG: "cyan",
    LogLevel.INFO: "",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "bold red",
}
_DEFAULT_LEVEL = LogLevel.INFO

_configured_level: LogLevel | None = None
_no_color_override: bool | None = None
_timestamps = False
_EMIT_LOCK = threading.Lock()


def parse_level(value: str | None) -> LogLevel | None:
    """Return the level named by ``value`` (case-insensitive), or ``None``."""
    if value is None:
        return None
    name = value.strip().lower()
    if name in LEVEL_NAMES:
        return LogLevel[name.upper()]
    return _ALIASES.get(name)


def configured_level() -> LogLevel:
    global _configured_level
    if _configured_level is None:
        _configured_level = parse_level(os.environ.get(LEVEL_ENV)) or _DEFAULT_LEVEL
    return _configured_level


def set_level(value: str | None) -> None:
    """Set the active level; unknown or empty names select ``info``."""
    global _configured_level
    _configured_level = parse_level(value) or _DEFAULT_LEVEL


def set_no_color(value: bool) -> None:
    """Force styling off, or hand the decision back to the environment."""
    global _no_color_override
    _no_color_override = True if value else None


def set_timestamps(value: bool) -> None:
    """Prefix each line with ``HH:MM:SS`` (used by the polling loop)."""
    global _timestamps
    _timestamps = value


def is_enabled(level: LogLevel) -> bool:
    return level >= configured_level()


def _no_color() -> bool:
    if _no_color_override is not None:
        return _no_color_override
    return any(os.environ.get(name) for name in NO_COLOR_ENVS)


def _render(level: LogLevel, message: str, style: str | None) -> Text:
    body = Text(message, style=style or _STYLES[level])
    if not _timestamps:
        return body
    stamp = dt.datetime.now().strftime("%H:%M:%S")
    return Text.assemble((stamp, "dim"), " ", body)


def emit(
    level: LogLevel,
    message: str,
    *,
    style: str | None = None,
    stderr: bool | None = None,
) -> None:
    if not is_enabled(level):
        return
    to_stderr = level >= LogLevel.WARNING if stderr is None else stderr
    text = _render(level, message, style)
    with _EMIT_LOCK:
        console = Console(
            file=sys.stderr if to_stderr else sys.stdout,
            soft_wrap=True,
            highlight=False,
            no_color=_no_color(),
        )
        console.print(text)


def trace(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.TRACE, message, style=style)


def debug(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.DEBUG, message, style=style)


def info(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.INFO, message, style=style)


def success(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.SUCCESS, message, style=style)


def warning(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.WARNING, message, style=style)


def error(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.ERROR, message, style=style)
