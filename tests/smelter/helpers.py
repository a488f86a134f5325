# ruff: noqa: E402

from __future__ import annotations

import datetime as dt
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import smelter.beads as beads
import smelter.exec as exec_util
from smelter.engine import PipelineStages
from smelter.engine.models import TestOutcome
from smelter.errors import FetchError, MergeError, RebaseError, TrackerError
from smelter.models import MERGE_REQUEST_TYPE, MergeRequest, MRFields

BASE_TIME = dt.datetime(2026, 3, 1, 9, 0, tzinfo=dt.timezone.utc)


def mr_description(
    branch: str | None = "polecat/nux",
    target: str | None = "main",
    worker: str | None = "nux",
    epic: str | None = None,
) -> str:
    lines = []
    for key, value in (("branch", branch), ("target", target), ("worker", worker)):
        if value is not None:
            lines.append(f"{key}: {value}")
    if epic is not None:
        lines.append(f"epic: {epic}")
    return "\n".join(lines) + "\n"


def make_item(
    item_id: str,
    *,
    branch: str | None = None,
    target: str | None = "main",
    worker: str | None = "nux",
    epic: str | None = None,
    priority: int = 2,
    created_at: dt.datetime | None = None,
    status: str = beads.STATUS_OPEN,
    description: str | None = None,
    issue_type: str = MERGE_REQUEST_TYPE,
    labels: tuple[str, ...] = (),
) -> MergeRequest:
    if description is None:
        description = mr_description(
            branch=branch if branch is not None else f"polecat/{item_id}",
            target=target,
            worker=worker,
            epic=epic,
        )
    return MergeRequest(
        id=item_id,
        title=f"Merge {item_id}",
        status=status,
        priority=priority,
        issue_type=issue_type,
        labels=labels,
        description=description,
        created_at=created_at or BASE_TIME,
    )


class FakeTracker:
    """In-memory tracker recording every call.

    ``failures`` maps an operation key to an error message. Keys are
    ``ready``, ``list``, ``create``, ``show``, ``close:<id>`` and
    ``update:<id>:<status>``.
    """

    def __init__(self, items: list[MergeRequest] | None = None) -> None:
        self.items: dict[str, MergeRequest] = {item.id: item for item in items or []}
        self.calls: list[tuple] = []
        self.failures: dict[str, str] = {}
        self._next_id = 1

    def _maybe_fail(self, key: str) -> None:
        if key in self.failures:
            raise TrackerError(self.failures[key])

    def add(self, item: MergeRequest) -> None:
        self.items[item.id] = item

    @property
    def mutations(self) -> list[tuple]:
        return [call for call in self.calls if call[0] in {"update", "close", "create", "fields"}]

    def updates_for(self, item_id: str) -> list[dict[str, object]]:
        return [call[2] for call in self.calls if call[0] == "update" and call[1] == item_id]

    def ready_with_type(self, kind: str) -> list[MergeRequest]:
        self.calls.append(("ready", kind))
        self._maybe_fail("ready")
        ready = [
            item
            for item in self.items.values()
            if item.status == beads.STATUS_OPEN and item.issue_type == kind
        ]
        return sorted(ready, key=lambda item: (item.priority or 0, item.created_at or BASE_TIME))

    def show(self, item_id: str) -> MergeRequest | None:
        self.calls.append(("show", item_id))
        self._maybe_fail("show")
        return self.items.get(item_id)

    def list_issues(
        self,
        *,
        status: str | None = None,
        issue_type: str | None = None,
        labels: tuple[str, ...] = (),
    ) -> list[MergeRequest]:
        self.calls.append(("list", status, issue_type, labels))
        self._maybe_fail("list")
        found = []
        for item in self.items.values():
            if status and item.status != status:
                continue
            if issue_type and item.issue_type != issue_type:
                continue
            if any(label not in item.labels for label in labels):
                continue
            found.append(item)
        return found

    def update(
        self,
        item_id: str,
        *,
        status: str | None = None,
        notes: str | None = None,
        assignee: str | None = None,
    ) -> None:
        changes = {"status": status, "notes": notes, "assignee": assignee}
        changes = {key: value for key, value in changes.items() if value is not None}
        self.calls.append(("update", item_id, changes))
        self._maybe_fail(f"update:{item_id}:{status}")
        item = self.items.get(item_id)
        if item is not None:
            self.items[item_id] = item.model_copy(update=changes)

    def close_with_reason(self, reason: str, *item_ids: str) -> None:
        self.calls.append(("close", reason, item_ids))
        for item_id in item_ids:
            self._maybe_fail(f"close:{item_id}")
            item = self.items.get(item_id)
            if item is not None:
                self.items[item_id] = item.model_copy(update={"status": beads.STATUS_CLOSED})

    def create_issue(
        self,
        *,
        title: str,
        description: str,
        issue_type: str = "task",
        labels: tuple[str, ...] = (),
        assignee: str | None = None,
        priority: int | None = None,
    ) -> str:
        self._maybe_fail("create")
        issue_id = f"sm-e{self._next_id}"
        self._next_id += 1
        self.calls.append(
            (
                "create",
                issue_id,
                {
                    "title": title,
                    "description": description,
                    "issue_type": issue_type,
                    "labels": labels,
                    "assignee": assignee,
                    "priority": priority,
                },
            )
        )
        self.items[issue_id] = MergeRequest(
            id=issue_id,
            title=title,
            status=beads.STATUS_OPEN,
            priority=priority,
            issue_type=issue_type,
            assignee=assignee,
            labels=labels,
            description=description,
            created_at=BASE_TIME,
        )
        return issue_id

    def created(self) -> list[dict[str, object]]:
        return [call[2] for call in self.calls if call[0] == "create"]

    def update_description_fields(self, item_id: str, fields: dict[str, str | None]) -> None:
        self.calls.append(("fields", item_id, dict(fields)))
        item = self.items[item_id]
        description = item.description
        for key, value in fields.items():
            description = beads.update_description_field(description, key=key, value=value)
        self.items[item_id] = item.model_copy(update={"description": description})


@dataclass
class FakeStages:
    """Scripted pipeline stages; every call lands in ``events``.

    ``conflicts`` maps a source branch to its conflicting paths. A rebase of
    a branch clears its conflicts unless ``rebase_error`` is set; a string
    becomes a ``RebaseError``, an exception is raised as is.
    """

    conflicts: dict[str, list[str]] = field(default_factory=dict)
    test_outcomes: list[TestOutcome] = field(default_factory=list)
    fetch_error: str | None = None
    merge_error: str | None = None
    cleanup_error: Exception | None = None
    rebase_error: str | Exception | None = None
    abort_error: Exception | None = None
    events: list[tuple] = field(default_factory=list)
    on_merge: Callable[[str], None] | None = None

    def fetch(self, fields: MRFields, target: str) -> None:
        self.events.append(("fetch", fields.branch, target))
        if self.fetch_error:
            raise FetchError(self.fetch_error)

    def ensure_branch(self, branch: str, *, base: str) -> None:
        self.events.append(("ensure_branch", branch, base))

    def check_conflicts(self, fields: MRFields, target: str) -> list[str]:
        self.events.append(("check_conflicts", fields.branch, target))
        return list(self.conflicts.get(fields.branch, []))

    def abort(self) -> None:
        self.events.append(("abort",))
        if self.abort_error is not None:
            raise self.abort_error

    def run_tests(self, command: str, *, attempts: int) -> TestOutcome:
        self.events.append(("run_tests", command, attempts))
        if self.test_outcomes:
            return self.test_outcomes.pop(0)
        return TestOutcome(passed=True, attempts=1)

    def merge(self, item: MergeRequest, fields: MRFields, target: str) -> str:
        self.events.append(("merge", item.id, target))
        if self.on_merge is not None:
            self.on_merge(item.id)
        if self.merge_error:
            raise MergeError(self.merge_error)
        return f"sha-{item.id}"

    def delete_branch(self, branch: str) -> None:
        self.events.append(("delete_branch", branch))
        if self.cleanup_error is not None:
            raise self.cleanup_error

    def rebase(self, fields: MRFields, target: str) -> None:
        self.events.append(("rebase", fields.branch, target))
        if isinstance(self.rebase_error, Exception):
            raise self.rebase_error
        if self.rebase_error:
            raise RebaseError(self.rebase_error)
        self.conflicts.pop(fields.branch, None)

    def event_names(self) -> list[str]:
        return [event[0] for event in self.events]

    def pipeline_stages(self, *, with_rebaser: bool = True) -> PipelineStages:
        return PipelineStages(
            fetcher=self,
            conflict_checker=self,
            test_runner=self,
            merger=self,
            cleaner=self,
            rebaser=self if with_rebaser else None,
        )


class FakeRunner:
    """Command runner answering from a handler; records every request.

    The handler receives the argv tuple and returns ``(returncode, stdout,
    stderr)`` or ``None`` for a missing executable. The default answers
    every command with success and no output.
    """

    def __init__(
        self,
        handler: Callable[[tuple[str, ...]], tuple[int, str, str] | None] | None = None,
    ) -> None:
        self.requests: list[exec_util.CommandRequest] = []
        self._handler = handler or (lambda _argv: (0, "", ""))

    def run(self, request: exec_util.CommandRequest) -> exec_util.CommandResult | None:
        self.requests.append(request)
        answer = self._handler(request.argv)
        if answer is None:
            return None
        returncode, stdout, stderr = answer
        return exec_util.CommandResult(
            argv=request.argv, returncode=returncode, stdout=stdout, stderr=stderr
        )

    @property
    def argvs(self) -> list[tuple[str, ...]]:
        return [request.argv for request in self.requests]

    def git_args(self) -> list[list[str]]:
        """Return git arguments with the ``git -C <dir>`` prefix removed."""
        return [list(argv[3:]) for argv in self.argvs if argv[:2] == ("git", "-C")]


@dataclass
class RecordingEscalation:
    calls: list[dict[str, object]] = field(default_factory=list)
    error: Exception | None = None

    def escalate(
        self,
        *,
        title: str,
        severity: str,
        reason: str = "",
        related: str | None = None,
    ) -> str:
        self.calls.append(
            {"title": title, "severity": severity, "reason": reason, "related": related}
        )
        if self.error is not None:
            raise self.error
        return f"sm-esc{len(self.calls)}"
