"""Configuration loading for the merge queue.

The rig's ``config.json`` may carry a ``merge_queue`` object. Each recognized
key overrides its default independently; missing keys (or ``null`` values)
keep the default. A malformed document is fatal: the engine does not start.

Example:
    >>> resolve_merge_queue_config({"merge_queue": {"target_branch": "release"}}).target_branch
    'release'
    >>> resolve_merge_queue_config({}).poll_interval.total_seconds()
    30.0
"""

from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

from pydantic import ValidationError

from . import paths
from .durations import format_duration
from .errors import ConfigError
from .models import MergeQueueConfig

MERGE_QUEUE_SECTION = "merge_queue"


def utc_now() -> dt.datetime:
    """Return the current UTC time without microseconds."""
    return dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)


def parse_rfc3339(value: str | None) -> dt.datetime | None:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC.

    Example:
        >>> parse_rfc3339("2026-01-02T03:04:05Z").isoformat()
        '2026-01-02T03:04:05+00:00'
        >>> parse_rfc3339("not-a-timestamp") is None
        True
    """
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def format_rfc3339(value: dt.datetime) -> str:
    return value.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def load_json(path: Path) -> dict | None:
    """Load a JSON object from disk.

    Returns:
        The parsed object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: The file is unreadable, not JSON, or not an object.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise ConfigError(f"reading config {path}: {exc}") from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"parsing config {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"parsing config {path}: expected a JSON object")
    return payload


def write_json(path: Path, payload: dict) -> None:
    """Write a JSON payload to disk, creating parent directories."""
    paths.ensure_dir(path.parent)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")


def _validation_detail(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or str(exc)


def resolve_merge_queue_config(
    document: dict | None, *, source: Path | str | None = None
) -> MergeQueueConfig:
    """Overlay the ``merge_queue`` section of a config document onto defaults."""
    location = f" in {source}" if source else ""
    if not document:
        return MergeQueueConfig()
    section = document.get(MERGE_QUEUE_SECTION)
    if section is None:
        return MergeQueueConfig()
    if not isinstance(section, dict):
        raise ConfigError(f"parsing merge_queue config{location}: expected a JSON object")
    overrides = {key: value for key, value in section.items() if value is not None}
    try:
        return MergeQueueConfig.model_validate(overrides)
    except ValidationError as exc:
        raise ConfigError(
            f"parsing merge_queue config{location}: {_validation_detail(exc)}"
        ) from exc


def load_merge_queue_config(path: Path) -> MergeQueueConfig:
    """Load merge-queue settings from a rig ``config.json``.

    A missing file yields the defaults.

    Raises:
        ConfigError: The file is unreadable or holds an invalid value.
    """
    return resolve_merge_queue_config(load_json(path), source=path)


def load_rig_merge_queue_config(rig_path: Path) -> MergeQueueConfig:
    return load_merge_queue_config(paths.rig_config_path(rig_path))


def describe_merge_queue_config(config: MergeQueueConfig) -> dict[str, object]:
    """Return a JSON-friendly view of a config (durations as strings)."""
    payload = config.model_dump()
    payload["poll_interval"] = format_duration(config.poll_interval)
    return payload
