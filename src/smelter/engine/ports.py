"""Typed ports between the engine and its collaborators."""

from __future__ import annotations

from typing import Protocol

from ..models import MergeRequest, MRFields
from .models import TestOutcome


class Tracker(Protocol):
    """Tracker operations the engine relies on.

    ``ready_with_type`` returns items ordered by priority (highest first),
    then age (oldest first).
    """

    def ready_with_type(self, kind: str) -> list[MergeRequest]: ...

    def update(
        self,
        item_id: str,
        *,
        status: str | None = None,
        notes: str | None = None,
        assignee: str | None = None,
    ) -> None: ...

    def close_with_reason(self, reason: str, *item_ids: str) -> None: ...

    def list_issues(
        self,
        *,
        status: str | None = None,
        issue_type: str | None = None,
        labels: tuple[str, ...] = (),
    ) -> list[MergeRequest]: ...


class Fetcher(Protocol):
    def fetch(self, fields: MRFields, target: str) -> None: ...

    def ensure_branch(self, branch: str, *, base: str) -> None: ...


class ConflictChecker(Protocol):
    def check_conflicts(self, fields: MRFields, target: str) -> list[str]:
        """Stage the merge of ``fields.branch`` into ``target``.

        Returns the conflicting paths; an empty list means the merge is
        staged and ready to commit.
        """
        ...

    def abort(self) -> None: ...


class TestRunner(Protocol):
    __test__ = False

    def run_tests(self, command: str, *, attempts: int) -> TestOutcome: ...


class Merger(Protocol):
    def merge(self, item: MergeRequest, fields: MRFields, target: str) -> str: ...


class BranchCleaner(Protocol):
    def delete_branch(self, branch: str) -> None: ...


class Rebaser(Protocol):
    def rebase(self, fields: MRFields, target: str) -> None: ...


class EscalationHook(Protocol):
    def escalate(
        self,
        *,
        title: str,
        severity: str,
        reason: str = "",
        related: str | None = None,
    ) -> str: ...
