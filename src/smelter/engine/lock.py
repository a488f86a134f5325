"""Single-engine-per-rig file lock."""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .. import log as smelter_log
from .. import paths
from ..errors import EngineLockedError

try:
    import fcntl
except ImportError:  # pragma: no cover - platform fallback
    fcntl = None


@contextmanager
def engine_lock(rig_path: Path, *, data_dir: Path | None = None) -> Iterator[Path]:
    """Hold the rig's engine lock for the duration of the block.

    The lock is non-blocking: a second engine on the same rig fails fast.

    Raises:
        EngineLockedError: Another process holds the lock.
    """
    lock_path = paths.engine_lock_path(rig_path, data_dir=data_dir)
    paths.ensure_dir(lock_path.parent)
    handle = lock_path.open("a+", encoding="utf-8")
    try:
        if fcntl is not None:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as exc:
                raise EngineLockedError(
                    f"another engine is already running for {rig_path}",
                    recovery_hint=f"stop the other engine or remove {lock_path} if it is stale",
                ) from exc
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        smelter_log.debug(f"[engine] acquired lock {lock_path}")
        try:
            yield lock_path
        finally:
            if fcntl is not None:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                except OSError:
                    pass
    finally:
        handle.close()
