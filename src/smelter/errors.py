"""Error contracts for the merge-queue engine.

Startup errors (configuration, disabled queue, instance lock) propagate to the
CLI, which exits non-zero. Tracker and claim errors abort only the current
cycle. Stage errors never leave the pipeline; they are folded into a
``ProcessResult``.
"""

from __future__ import annotations


class SmelterError(Exception):
    """Base class for expected Smelter failures."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__(message)
        self.recovery_hint = recovery_hint


class ConfigError(SmelterError):
    """Configuration could not be read or contains an invalid value."""


class MergeQueueDisabledError(SmelterError):
    """The merge queue is disabled in the rig configuration."""


class EngineLockedError(SmelterError):
    """Another engine instance already owns the rig."""


class TrackerError(SmelterError):
    """A tracker query or mutation failed."""


class ClaimError(TrackerError):
    """Claiming a merge request (status -> in_progress) failed."""

    def __init__(self, item_id: str, message: str) -> None:
        super().__init__(f"claiming {item_id}: {message}")
        self.item_id = item_id


class StageError(SmelterError):
    """An integration pipeline stage failed."""

    stage = "pipeline"


class MRFieldsError(StageError):
    """Merge request description is missing required fields."""

    stage = "parse"


class FetchError(StageError):
    stage = "fetch"


class MergeError(StageError):
    stage = "merge"


class CleanupError(StageError):
    stage = "cleanup"


class RebaseError(StageError):
    stage = "rebase"


class EscalationError(SmelterError):
    """An escalation could not be filed, found, or updated."""
