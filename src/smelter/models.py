"""Pydantic models for merge-queue configuration and tracker payloads."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, field_validator

from .durations import parse_duration
from .errors import MRFieldsError

ON_CONFLICT_ASSIGN_BACK = "assign_back"
ON_CONFLICT_AUTO_REBASE = "auto_rebase"
ON_CONFLICT_VALUES = (ON_CONFLICT_ASSIGN_BACK, ON_CONFLICT_AUTO_REBASE)

MERGE_REQUEST_TYPE = "merge-request"
INTEGRATION_BRANCH_PREFIX = "integration/"
REQUIRED_MR_FIELDS = ("branch", "target", "worker")

DEFAULT_POLL_INTERVAL = dt.timedelta(seconds=30)


class MergeQueueConfig(BaseModel):
    """Merge queue settings from the ``merge_queue`` section of a rig config.

    Instances are immutable. Reconfiguration builds a new instance.

    Attributes:
        enabled: Whether the merge queue runs at all.
        target_branch: Default destination branch.
        integration_branches: Route epic merge requests through
            ``integration/<epic>`` staging branches.
        on_conflict: ``assign_back`` or ``auto_rebase``. Not validated here.
        run_tests: Run ``test_command`` against the merged tree.
        test_command: Shell-style command line for the test stage.
        delete_merged_branches: Delete source branches after a merge.
        retry_flaky_tests: Extra test attempts after the first failure.
        poll_interval: Delay between processing cycles.
        max_concurrent: Upper bound on simultaneously processed items.

    Example:
        >>> MergeQueueConfig().target_branch
        'main'
        >>> MergeQueueConfig(poll_interval="1m").poll_interval.total_seconds()
        60.0
    """

    model_config = ConfigDict(extra="ignore", frozen=True, strict=True)

    enabled: bool = True
    target_branch: str = "main"
    integration_branches: bool = True
    on_conflict: str = ON_CONFLICT_ASSIGN_BACK
    run_tests: bool = True
    test_command: str = ""
    delete_merged_branches: bool = True
    retry_flaky_tests: int = 1
    poll_interval: dt.timedelta = DEFAULT_POLL_INTERVAL
    max_concurrent: int = 1

    @field_validator("poll_interval", mode="before")
    @classmethod
    def parse_poll_interval(cls, value: object) -> object:
        if isinstance(value, dt.timedelta):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = parse_duration(value)
            except ValueError as exc:
                raise ValueError(f"invalid poll_interval {value!r}: {exc}") from exc
        else:
            raise ValueError("poll_interval must be a duration string such as '30s'")
        if parsed <= dt.timedelta(0):
            raise ValueError(f"poll_interval must be positive, got {value!r}")
        return parsed

    @property
    def test_attempts(self) -> int:
        """Total test attempts: the first run plus flaky retries."""
        return 1 + max(0, self.retry_flaky_tests)

    @property
    def worker_slots(self) -> int:
        return max(1, self.max_concurrent)


def _clean_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


class MergeRequest(BaseModel):
    """Validated tracker issue payload for a merge-request item."""

    model_config = ConfigDict(extra="allow")

    id: str
    title: str = ""
    status: str | None = None
    priority: int | None = None
    issue_type: str | None = None
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    description: str = ""
    notes: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: object) -> object:
        normalized = _clean_str(value)
        if normalized is None:
            raise ValueError("missing issue id")
        return normalized

    @field_validator("status", "issue_type", "assignee", mode="before")
    @classmethod
    def _normalize_optional(cls, value: object) -> object:
        return _clean_str(value)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _normalize_text(cls, value: object) -> object:
        if value is None:
            return ""
        return value

    @field_validator("labels", mode="before")
    @classmethod
    def _normalize_labels(cls, value: object) -> tuple[str, ...]:
        if not isinstance(value, list | tuple):
            return ()
        normalized: list[str] = []
        for entry in value:
            label = _clean_str(entry)
            if label and label not in normalized:
                normalized.append(label)
        return tuple(normalized)

    @property
    def fields(self) -> dict[str, str]:
        return parse_description_fields(self.description)


def parse_description_fields(description: str | None) -> dict[str, str]:
    """Parse ``key: value`` lines from an item description.

    Example:
        >>> parse_description_fields("branch: polecat/nux\\ntarget: main\\nnoise")
        {'branch': 'polecat/nux', 'target': 'main'}
    """
    fields: dict[str, str] = {}
    if not description:
        return fields
    for line in description.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        if not key:
            continue
        fields[key] = value.strip()
    return fields


@dataclass(frozen=True)
class MRFields:
    """Integration coordinates parsed from a merge request description."""

    branch: str
    target: str
    worker: str
    epic: str | None = None

    def effective_target(self, config: MergeQueueConfig) -> str:
        """Return the branch this merge request lands on.

        Example:
            >>> fields = MRFields(branch="b", target="main", worker="w", epic="sm-7")
            >>> fields.effective_target(MergeQueueConfig())
            'integration/sm-7'
            >>> fields.effective_target(MergeQueueConfig(integration_branches=False))
            'main'
        """
        if config.integration_branches and self.epic:
            return integration_branch_name(self.epic)
        return self.target


def integration_branch_name(epic_id: str) -> str:
    return f"{INTEGRATION_BRANCH_PREFIX}{epic_id}"


def parse_mr_fields(item: MergeRequest) -> MRFields:
    """Extract ``branch``/``target``/``worker`` (and optional ``epic``).

    Raises:
        MRFieldsError: One or more required fields are missing or empty.
    """
    fields = item.fields
    missing = [
        key for key in REQUIRED_MR_FIELDS if not fields.get(key) or fields[key] == "null"
    ]
    if missing:
        raise MRFieldsError(f"missing MR fields in {item.id}: {', '.join(missing)}")
    epic = fields.get("epic")
    if epic in {"", "null"}:
        epic = None
    return MRFields(
        branch=fields["branch"],
        target=fields["target"],
        worker=fields["worker"],
        epic=epic,
    )
