"""Path helpers for rig configuration files and engine state."""

from __future__ import annotations

import hashlib
from pathlib import Path

from platformdirs import user_data_dir

SMELTER_APP_NAME = "smelter"
RIG_CONFIG_FILENAME = "config.json"
SETTINGS_DIRNAME = "settings"
ESCALATION_CONFIG_FILENAME = "escalation.json"
LOCKS_DIRNAME = "locks"
WORKER_STATE_DIRNAME = ".smelter"


def smelter_data_dir() -> Path:
    """Return the base Smelter data directory.

    Example:
        >>> isinstance(smelter_data_dir(), Path)
        True
    """
    return Path(user_data_dir(SMELTER_APP_NAME))


def rig_config_path(rig_path: Path) -> Path:
    """Return the rig-level ``config.json`` path.

    Example:
        >>> rig_config_path(Path("/rigs/gastown")).as_posix()
        '/rigs/gastown/config.json'
    """
    return rig_path / RIG_CONFIG_FILENAME


def escalation_config_path(rig_path: Path) -> Path:
    """Return the escalation settings path for a rig.

    Example:
        >>> escalation_config_path(Path("/rigs/gastown")).as_posix()
        '/rigs/gastown/settings/escalation.json'
    """
    return rig_path / SETTINGS_DIRNAME / ESCALATION_CONFIG_FILENAME


def rig_key(rig_path: Path) -> str:
    """Return a stable identifier for a rig path."""
    try:
        resolved = rig_path.resolve()
    except OSError:
        resolved = rig_path
    digest = hashlib.sha256(resolved.as_posix().encode("utf-8")).hexdigest()[:12]
    return f"{resolved.name or 'rig'}-{digest}"


def engine_lock_path(rig_path: Path, *, data_dir: Path | None = None) -> Path:
    """Return the lock file that marks a rig as owned by a running engine."""
    base = data_dir if data_dir is not None else smelter_data_dir()
    return base / LOCKS_DIRNAME / f"{rig_key(rig_path)}.lock"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def worker_worktree_path(rig_path: Path, slot: int) -> Path:
    """Return the working copy used by pool worker ``slot`` (slot 0 is the rig).

    Example:
        >>> worker_worktree_path(Path("/rigs/gastown"), 2).as_posix()
        '/rigs/gastown/.smelter/workers/2'
    """
    if slot == 0:
        return rig_path
    return rig_path / WORKER_STATE_DIRNAME / "workers" / str(slot)
