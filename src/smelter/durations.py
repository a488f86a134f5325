"""Duration strings in the ``1h30m`` / ``30s`` / ``250ms`` format.

Example:
    >>> parse_duration("1m30s")
    datetime.timedelta(seconds=90)
    >>> format_duration(parse_duration("90s"))
    '1m30s'
"""

from __future__ import annotations

import datetime as dt
import re

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
# Longer units first so "ms" is never read as "m" followed by garbage.
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
# Largest duration representable as signed 64-bit nanoseconds (about 292 years).
_MAX_SECONDS = (2**63 - 1) / 1e9


def parse_duration(value: str) -> dt.timedelta:
    """Parse a duration string such as ``"30s"`` or ``"1h15m"``.

    A duration is an optionally signed sequence of decimal numbers, each with
    a unit suffix. ``"0"`` is the only unit-less value accepted.

    Raises:
        ValueError: The string is empty, not a valid duration, or out of range.

    Example:
        >>> parse_duration("1.5h").total_seconds()
        5400.0
        >>> parse_duration("notaduration")
        Traceback (most recent call last):
        ...
        ValueError: invalid duration 'notaduration'
    """
    raw = value
    if not raw:
        raise ValueError("invalid duration ''")
    sign = 1.0
    body = raw
    if body[0] in "+-":
        sign = -1.0 if body[0] == "-" else 1.0
        body = body[1:]
    if body == "0":
        return dt.timedelta(0)
    if not body:
        raise ValueError(f"invalid duration {raw!r}")
    total = 0.0
    position = 0
    while position < len(body):
        match = _DURATION_PART.match(body, position)
        if match is None:
            raise ValueError(f"invalid duration {raw!r}")
        number, unit = match.groups()
        total += float(number) * _UNIT_SECONDS[unit]
        position = match.end()
    if total > _MAX_SECONDS:
        raise ValueError(f"invalid duration {raw!r}")
    return dt.timedelta(seconds=sign * total)


def _format_seconds(value: float) -> str:
    if value == int(value):
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


def format_duration(delta: dt.timedelta) -> str:
    """Render a timedelta in the same format ``parse_duration`` accepts.

    Example:
        >>> format_duration(dt.timedelta(hours=4))
        '4h0m0s'
        >>> format_duration(dt.timedelta(milliseconds=250))
        '250ms'
    """
    total = delta.total_seconds()
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    if total < 1:
        return f"{sign}{_format_seconds(total * 1000)}ms"
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{sign}{int(hours)}h{int(minutes)}m{_format_seconds(seconds)}s"
    if minutes:
        return f"{sign}{int(minutes)}m{_format_seconds(seconds)}s"
    return f"{sign}{_format_seconds(seconds)}s"
