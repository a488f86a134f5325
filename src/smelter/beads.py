"""Beads (``bd``) tracker adapter for merge-queue work items."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import NamedTemporaryFile

from pydantic import ValidationError

from . import exec
from . import log as smelter_log
from .errors import TrackerError
from .models import MergeRequest

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_CLOSED = "closed"
# `bd ready` returns 10 issues unless told otherwise.
READY_LIMIT = 1000


def beads_env(beads_root: Path | None, *, actor: str | None = None) -> dict[str, str]:
    """Return an environment mapping pointing ``bd`` at the rig's store."""
    env = os.environ.copy()
    if beads_root is not None:
        env["BEADS_DIR"] = str(beads_root)
    if actor:
        env.setdefault("BD_ACTOR", actor)
    return env


def update_description_field(description: str | None, *, key: str, value: str | None) -> str:
    """Upsert one ``key: value`` line in a description.

    Example:
        >>> update_description_field("severity: low\\nreason: x\\n", key="severity", value="high")
        'severity: high\\nreason: x\\n'
    """
    target = (description or "").rstrip("\n")
    lines = target.splitlines() if target else []
    updated: list[str] = []
    needle = f"{key}:"
    found = False
    replacement = value if value is not None else "null"
    for line in lines:
        if line.strip().startswith(needle):
            if not found:
                updated.append(f"{key}: {replacement}")
                found = True
            continue
        updated.append(line)
    if not found:
        updated.append(f"{key}: {replacement}")
    return "\n".join(updated).rstrip("\n") + "\n"


def parse_issues(payload: list[dict[str, object]], *, source: str) -> list[MergeRequest]:
    """Validate raw ``bd`` issue payloads."""
    issues: list[MergeRequest] = []
    for index, raw in enumerate(payload):
        try:
            issues.append(MergeRequest.model_validate(raw))
        except ValidationError as exc:
            raise TrackerError(f"invalid beads issue payload at {source}[{index}]: {exc}") from exc
    return issues


@dataclass(frozen=True)
class BeadsTracker:
    """Typed ``bd`` command boundary used by the engine.

    Every failure is raised as ``TrackerError`` so the caller decides whether
    it aborts a cycle or is merely logged.
    """

    cwd: Path
    beads_root: Path | None = None
    actor: str | None = None
    runner: exec.CommandRunner | None = field(default=None, compare=False)

    def _request(self, args: list[str]) -> exec.CommandRequest:
        return exec.CommandRequest(
            argv=("bd", *args),
            cwd=self.cwd,
            env=beads_env(self.beads_root, actor=self.actor),
        )

    def run(self, args: list[str]) -> exec.CommandResult:
        request = self._request(args)
        smelter_log.trace(f"[beads] {' '.join(request.argv)}")
        try:
            return exec.run_checked(request, runner=self.runner)
        except exec.CommandExecutionError as exc:
            raise TrackerError(exc.detail) from exc

    def run_json(self, args: list[str]) -> list[dict[str, object]]:
        command = list(args)
        if "--json" not in command:
            command.append("--json")
        result = self.run(command)
        try:
            return exec.parse_json_objects(result, context=f"bd {command[0]}")
        except ValueError as exc:
            raise TrackerError(str(exc)) from exc

    def ready_with_type(self, kind: str) -> list[MergeRequest]:
        """Return ready items of one issue type in tracker order.

        ``bd ready`` orders by priority then age. The type filter runs in bd so
        other ready work never crowds merge requests out of the result.
        """
        args = ["ready", "--type", kind, "--limit", str(READY_LIMIT)]
        issues = parse_issues(self.run_json(args), source="bd ready")
        return [issue for issue in issues if issue.issue_type == kind]

    def show(self, item_id: str) -> MergeRequest | None:
        issues = parse_issues(self.run_json(["show", item_id]), source="bd show")
        return issues[0] if issues else None

    def list_issues(
        self,
        *,
        status: str | None = None,
        issue_type: str | None = None,
        labels: tuple[str, ...] = (),
    ) -> list[MergeRequest]:
        args = ["list"]
        if status:
            args.extend(["--status", status])
        if issue_type:
            args.extend(["--type", issue_type])
        for label in labels:
            args.extend(["--label", label])
        return parse_issues(self.run_json(args), source="bd list")

    def update(
        self,
        item_id: str,
        *,
        status: str | None = None,
        notes: str | None = None,
        assignee: str | None = None,
    ) -> None:
        """Apply a partial update. Only the given fields change."""
        args = ["update", item_id]
        if status is not None:
            args.extend(["--status", status])
        if notes is not None:
            args.extend(["--notes", notes])
        if assignee is not None:
            args.extend(["--assignee", assignee])
        if len(args) == 2:
            return
        self.run(args)

    def close_with_reason(self, reason: str, *item_ids: str) -> None:
        if not item_ids:
            return
        self.run(["close", *item_ids, "--reason", reason])

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
        """Create an issue and return its identifier."""
        args = ["create", "--type", issue_type, "--title", title]
        if labels:
            args.extend(["--labels", ",".join(labels)])
        if assignee:
            args.extend(["--assignee", assignee])
        if priority is not None:
            args.extend(["--priority", str(priority)])
        with NamedTemporaryFile("w", encoding="utf-8", delete=False) as handle:
            handle.write(description)
            temp_path = Path(handle.name)
        try:
            result = self.run([*args, "--body-file", str(temp_path), "--silent"])
        finally:
            temp_path.unlink(missing_ok=True)
        issue_id = result.stdout.strip() if result.stdout else ""
        if not issue_id:
            raise TrackerError(f"failed to create issue: {title}")
        return issue_id

    def update_description_fields(self, item_id: str, fields: dict[str, str | None]) -> None:
        """Upsert description fields on an issue, writing only on change."""
        issue = self.show(item_id)
        if issue is None:
            raise TrackerError(f"issue not found: {item_id}")
        updated = issue.description
        for key, value in fields.items():
            updated = update_description_field(updated, key=key, value=value)
        if updated == issue.description:
            return
        with NamedTemporaryFile("w", encoding="utf-8", delete=False) as handle:
            handle.write(updated)
            temp_path = Path(handle.name)
        try:
            self.run(["update", item_id, "--body-file", str(temp_path)])
        finally:
            temp_path.unlink(missing_ok=True)
