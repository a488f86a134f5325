"""Engine data models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

KIND_SUCCESS = "success"
KIND_CONFLICT = "conflict"
KIND_TESTS_FAILED = "tests_failed"
KIND_OTHER = "other"


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one pipeline invocation.

    Exactly one of success, conflict, tests-failed or other describes a
    result; see ``kind``.

    Example:
        >>> ProcessResult.merged("abc123").kind
        'success'
        >>> ProcessResult.conflicted("conflict in a.py", ("a.py",)).kind
        'conflict'
    """

    success: bool
    merge_commit: str | None = None
    error: str = ""
    conflict: bool = False
    tests_failed: bool = False
    stage: str | None = None
    conflict_paths: tuple[str, ...] = ()

    @property
    def kind(self) -> str:
        if self.success:
            return KIND_SUCCESS
        if self.conflict:
            return KIND_CONFLICT
        if self.tests_failed:
            return KIND_TESTS_FAILED
        return KIND_OTHER

    @classmethod
    def merged(cls, merge_commit: str) -> ProcessResult:
        return cls(success=True, merge_commit=merge_commit)

    @classmethod
    def conflicted(cls, error: str, paths: tuple[str, ...] = ()) -> ProcessResult:
        return cls(
            success=False, error=error, conflict=True, stage="conflict", conflict_paths=paths
        )

    @classmethod
    def failed_tests(cls, error: str) -> ProcessResult:
        return cls(success=False, error=error, tests_failed=True, stage="test")

    @classmethod
    def failed(cls, error: str, *, stage: str | None = None) -> ProcessResult:
        return cls(success=False, error=error, stage=stage)


@dataclass(frozen=True)
class TestOutcome:
    __test__ = False

    passed: bool
    attempts: int
    detail: str = ""


class CycleStatus(str, Enum):
    IDLE = "idle"
    MERGED = "merged"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ItemOutcome:
    item_id: str
    status: CycleStatus
    result: ProcessResult | None = None


@dataclass(frozen=True)
class CycleOutcome:
    """Summary of one processing cycle.

    Example:
        >>> CycleOutcome().status.value
        'idle'
    """

    items: tuple[ItemOutcome, ...] = ()

    @property
    def status(self) -> CycleStatus:
        if not self.items:
            return CycleStatus.IDLE
        statuses = {item.status for item in self.items}
        if CycleStatus.FAILED in statuses:
            return CycleStatus.FAILED
        if CycleStatus.MERGED in statuses:
            return CycleStatus.MERGED
        return CycleStatus.SKIPPED

    @property
    def item_ids(self) -> tuple[str, ...]:
        return tuple(item.item_id for item in self.items)
