"""Escalations: severity-routed alerts filed as beads and delivered as mail.

An escalation is a tracker issue labelled ``sm:escalation`` whose description
carries ``key: value`` fields (severity, reason, acknowledgement state and
re-escalation bookkeeping). Each severity maps to a route, a list of actions:

- ``bead``: the escalation issue itself (always filed)
- ``mail:<target>``: a mail bead assigned to ``<target>``
- ``email:human`` / ``sms:human`` / ``slack``: external channels, reported
  as "would send" since no transport is wired in
- ``log``: an error line on the engine log

Unknown actions are ignored.

Example:
    >>> next_severity("low"), next_severity("critical"), next_severity("bogus")
    ('medium', 'critical', 'critical')
    >>> extract_mail_targets_from_actions(["bead", "mail:mayor", "mailto:x", "mail:"])
    ['mayor']
"""

from __future__ import annotations

import datetime as dt
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import config as config_util
from . import log as smelter_log
from . import messages, paths
from .durations import format_duration, parse_duration
from .errors import ConfigError, EscalationError, TrackerError
from .models import MergeRequest, parse_description_fields

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"
SEVERITIES = (SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH, SEVERITY_CRITICAL)

ESCALATION_LABEL = "sm:escalation"
MAIL_ACTION_PREFIX = "mail:"
CLI_NAME = "smelter"

_NEXT_SEVERITY = {
    SEVERITY_LOW: SEVERITY_MEDIUM,
    SEVERITY_MEDIUM: SEVERITY_HIGH,
    SEVERITY_HIGH: SEVERITY_CRITICAL,
    SEVERITY_CRITICAL: SEVERITY_CRITICAL,
}
_SEVERITY_EMOJI = {
    SEVERITY_CRITICAL: "\U0001f6a8",
    SEVERITY_HIGH: "⚠️",
    SEVERITY_MEDIUM: "\U0001f4e2",
    SEVERITY_LOW: "ℹ️",
}
_DEFAULT_EMOJI = "\U0001f4cb"
_SEVERITY_PRIORITY = {
    SEVERITY_CRITICAL: 0,
    SEVERITY_HIGH: 1,
    SEVERITY_MEDIUM: 2,
    SEVERITY_LOW: 3,
}


def is_valid_severity(severity: str) -> bool:
    return severity in _NEXT_SEVERITY


def next_severity(severity: str) -> str:
    """Return the next severity up the ladder; unknown values jump to critical."""
    return _NEXT_SEVERITY.get(severity, SEVERITY_CRITICAL)


def severity_emoji(severity: str) -> str:
    return _SEVERITY_EMOJI.get(severity, _DEFAULT_EMOJI)


def _plural(count: int, unit: str) -> str:
    return f"1 {unit} ago" if count == 1 else f"{count} {unit}s ago"


def format_relative_time(timestamp: str, *, now: dt.datetime | None = None) -> str:
    """Render an RFC 3339 timestamp relative to now.

    Unparseable input is returned unchanged.

    Example:
        >>> now = dt.datetime(2026, 1, 2, 12, 0, tzinfo=dt.timezone.utc)
        >>> format_relative_time("2026-01-02T09:00:00Z", now=now)
        '3 hours ago'
        >>> format_relative_time("yesterday", now=now)
        'yesterday'
    """
    parsed = config_util.parse_rfc3339(timestamp)
    if parsed is None:
        return timestamp
    current = now or dt.datetime.now(tz=dt.timezone.utc)
    elapsed = current - parsed
    if elapsed < dt.timedelta(minutes=1):
        return "just now"
    if elapsed < dt.timedelta(hours=1):
        return _plural(int(elapsed.total_seconds() // 60), "minute")
    if elapsed < dt.timedelta(days=1):
        return _plural(int(elapsed.total_seconds() // 3600), "hour")
    return _plural(elapsed.days, "day")


def extract_mail_targets_from_actions(actions: list[str] | None) -> list[str]:
    """Return ``mail:`` targets in route order.

    The prefix match is case sensitive and the target is not trimmed, so
    ``"mail:a:b"`` yields ``"a:b"`` and ``"mail:"`` yields nothing.
    """
    targets: list[str] = []
    for action in actions or ():
        if not action.startswith(MAIL_ACTION_PREFIX):
            continue
        target = action[len(MAIL_ACTION_PREFIX) :]
        if target:
            targets.append(target)
    return targets


def detect_sender_fallback() -> str:
    """Identify the caller from ``BD_ACTOR``, then ``SMELTER_ROLE``."""
    for name in ("BD_ACTOR", "SMELTER_ROLE"):
        value = os.environ.get(name, "")
        if value:
            return value
    return ""


def _instructions(escalation_id: str) -> list[str]:
    return [
        "---",
        f"To acknowledge: {CLI_NAME} escalate ack {escalation_id}",
        f"To close: {CLI_NAME} escalate close {escalation_id} --reason \"...\"",
    ]


def format_escalation_mail_body(
    escalation_id: str, severity: str, reason: str, sender: str, related: str | None
) -> str:
    """Build the mail body sent for a new escalation.

    Example:
        >>> print(format_escalation_mail_body("sm-1", "high", "", "engine", None))
        Escalation ID: sm-1
        Severity: high
        From: engine
        <BLANKLINE>
        ---
        To acknowledge: smelter escalate ack sm-1
        To close: smelter escalate close sm-1 --reason "..."
    """
    lines = [
        f"Escalation ID: {escalation_id}",
        f"Severity: {severity}",
        f"From: {sender}",
    ]
    if reason:
        lines.extend(["", "Reason:", reason])
    if related:
        lines.extend(["", f"Related: {related}"])
    lines.append("")
    lines.extend(_instructions(escalation_id))
    return "\n".join(lines)


@dataclass(frozen=True)
class ReescalationResult:
    id: str
    title: str
    old_severity: str
    new_severity: str
    reescalation_num: int
    skipped: bool = False
    skip_reason: str = ""


def format_reescalation_mail_body(result: ReescalationResult, reescalated_by: str) -> str:
    lines = [
        f"Escalation ID: {result.id}",
        f"Severity bumped: {result.old_severity} → {result.new_severity}",
        f"Reescalation #{result.reescalation_num}",
        f"Reescalated by: {reescalated_by}",
        "",
        "This escalation was not acknowledged within the stale threshold and was "
        "automatically re-escalated to a higher severity.",
        "",
    ]
    lines.extend(_instructions(result.id))
    return "\n".join(lines)


class EscalationContacts(BaseModel):
    model_config = ConfigDict(extra="ignore")

    human_email: str = ""
    human_sms: str = ""
    slack_webhook: str = ""


def _default_routes() -> dict[str, list[str]]:
    return {
        SEVERITY_LOW: ["bead"],
        SEVERITY_MEDIUM: ["bead", "mail:mayor"],
        SEVERITY_HIGH: ["bead", "mail:mayor", "email:human"],
        SEVERITY_CRITICAL: ["bead", "mail:mayor", "email:human", "sms:human"],
    }


class EscalationConfig(BaseModel):
    """Escalation routing loaded from ``<rig>/settings/escalation.json``.

    Example:
        >>> cfg = EscalationConfig()
        >>> cfg.stale_threshold.total_seconds(), cfg.max_reescalations
        (14400.0, 2)
        >>> cfg.route_for("critical")[:2]
        ['bead', 'mail:mayor']
    """

    model_config = ConfigDict(extra="ignore")

    routes: dict[str, list[str]] = Field(default_factory=_default_routes)
    contacts: EscalationContacts = Field(default_factory=EscalationContacts)
    stale_threshold: dt.timedelta = dt.timedelta(hours=4)
    max_reescalations: int = 2
    merge_failure_threshold: int = 3

    @field_validator("stale_threshold", mode="before")
    @classmethod
    def _parse_stale_threshold(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    def route_for(self, severity: str) -> list[str]:
        return list(self.routes.get(severity, ()))

    def to_document(self) -> dict[str, object]:
        payload = self.model_dump()
        payload["stale_threshold"] = format_duration(self.stale_threshold)
        return payload


def load_or_create_escalation_config(path: Path) -> EscalationConfig:
    """Load escalation settings, writing the defaults when the file is missing.

    Raises:
        ConfigError: The file exists but cannot be parsed.
    """
    document = config_util.load_json(path)
    if document is None:
        cfg = EscalationConfig()
        config_util.write_json(path, cfg.to_document())
        smelter_log.debug(f"[escalation] wrote default config {path}")
        return cfg
    try:
        return EscalationConfig.model_validate(document)
    except (ValidationError, ValueError) as exc:
        raise ConfigError(f"parsing escalation config {path}: {exc}") from exc


def load_rig_escalation_config(rig_path: Path) -> EscalationConfig:
    return load_or_create_escalation_config(paths.escalation_config_path(rig_path))


def execute_external_actions(
    actions: list[str],
    cfg: EscalationConfig,
    escalation_id: str,
    severity: str,
    description: str,
) -> None:
    """Report external notifications for a route.

    ``mail:`` and ``bead`` actions are handled by the caller; anything else
    unrecognized is ignored.
    """
    contacts = cfg.contacts
    for action in actions:
        if action == "email:human":
            if not contacts.human_email:
                smelter_log.warning(
                    f"[escalation] {escalation_id}: email:human requested "
                    "but contacts.human_email is not configured"
                )
            else:
                smelter_log.info(
                    f"[escalation] {escalation_id}: would send email to {contacts.human_email}"
                )
        elif action == "sms:human":
            if not contacts.human_sms:
                smelter_log.warning(
                    f"[escalation] {escalation_id}: sms:human requested "
                    "but contacts.human_sms is not configured"
                )
            else:
                smelter_log.info(
                    f"[escalation] {escalation_id}: would send sms to {contacts.human_sms}"
                )
        elif action == "slack":
            if not contacts.slack_webhook:
                smelter_log.warning(
                    f"[escalation] {escalation_id}: slack requested "
                    "but contacts.slack_webhook is not configured"
                )
            else:
                smelter_log.info(f"[escalation] {escalation_id}: would post to slack")
        elif action == "log":
            smelter_log.error(
                f"[escalation] {severity_emoji(severity)} {severity.upper()} "
                f"{escalation_id}: {description}"
            )


class EscalationTracker(Protocol):
    def create_issue(
        self,
        *,
        title: str,
        description: str,
        issue_type: str = "task",
        labels: tuple[str, ...] = (),
        assignee: str | None = None,
        priority: int | None = None,
    ) -> str: ...

    def show(self, item_id: str) -> MergeRequest | None: ...

    def list_issues(
        self,
        *,
        status: str | None = None,
        issue_type: str | None = None,
        labels: tuple[str, ...] = (),
    ) -> list[MergeRequest]: ...

    def update_description_fields(self, item_id: str, fields: dict[str, str | None]) -> None: ...

    def close_with_reason(self, reason: str, *item_ids: str) -> None: ...


def _field(fields: dict[str, str], key: str) -> str:
    value = fields.get(key, "")
    return "" if value == "null" else value


class Escalator:
    """Files, re-escalates, acknowledges and closes escalations."""

    def __init__(
        self,
        tracker: EscalationTracker,
        config: EscalationConfig,
        *,
        sender: str | None = None,
    ) -> None:
        self._tracker = tracker
        self._config = config
        self._sender = sender or detect_sender_fallback() or "unknown"

    @property
    def config(self) -> EscalationConfig:
        return self._config

    def escalate(
        self,
        *,
        title: str,
        severity: str,
        reason: str = "",
        related: str | None = None,
        now: dt.datetime | None = None,
    ) -> str:
        """File an escalation bead and dispatch its route. Returns its id."""
        if not is_valid_severity(severity):
            raise EscalationError(
                f"invalid severity {severity!r}",
                recovery_hint=f"use one of: {', '.join(SEVERITIES)}",
            )
        stamp = config_util.format_rfc3339(now or config_util.utc_now())
        description = (
            f"severity: {severity}\n"
            f"reason: {reason or 'null'}\n"
            f"source: {self._sender}\n"
            f"escalated_at: {stamp}\n"
            f"related: {related or 'null'}\n"
            "acked_by: null\n"
            "reescalation_count: 0\n"
        )
        try:
            escalation_id = self._tracker.create_issue(
                title=f"[{severity.upper()}] {title}",
                description=description,
                labels=(ESCALATION_LABEL, f"severity:{severity}"),
                priority=_SEVERITY_PRIORITY[severity],
            )
        except TrackerError as exc:
            raise EscalationError(f"filing escalation: {exc}") from exc
        smelter_log.warning(
            f"[escalation] {severity_emoji(severity)} filed {escalation_id} ({severity}): {title}"
        )
        actions = self._config.route_for(severity)
        body = format_escalation_mail_body(escalation_id, severity, reason, self._sender, related)
        self._send_mail(
            extract_mail_targets_from_actions(actions),
            subject=f"{severity_emoji(severity)} [{severity.upper()}] {title}",
            body=body,
            metadata={"kind": "escalation", "escalation": escalation_id, "severity": severity},
            severity=severity,
        )
        execute_external_actions(actions, self._config, escalation_id, severity, title)
        return escalation_id

    def _send_mail(
        self,
        targets: list[str],
        *,
        subject: str,
        body: str,
        metadata: dict[str, object],
        severity: str,
    ) -> None:
        for target in targets:
            description = messages.render_mail(
                {"from": self._sender, "to": target, **metadata}, body
            )
            try:
                mail_id = self._tracker.create_issue(
                    title=subject,
                    description=description,
                    labels=(messages.MESSAGE_LABEL, messages.UNREAD_LABEL),
                    assignee=target,
                    priority=_SEVERITY_PRIORITY.get(severity),
                )
            except TrackerError as exc:
                smelter_log.warning(f"[escalation] mail to {target} failed: {exc}")
                continue
            smelter_log.debug(f"[escalation] mailed {target} ({mail_id})")

    def list_open(self) -> list[MergeRequest]:
        return self._tracker.list_issues(status="open", labels=(ESCALATION_LABEL,))

    def reescalate_stale(self, *, now: dt.datetime | None = None) -> list[ReescalationResult]:
        """Bump every unacknowledged escalation older than the stale threshold.

        Escalations that already reached ``max_reescalations`` are reported
        as skipped and left untouched.
        """
        current = now or config_util.utc_now()
        results: list[ReescalationResult] = []
        for issue in self.list_open():
            fields = parse_description_fields(issue.description)
            if _field(fields, "acked_by"):
                continue
            reference = config_util.parse_rfc3339(
                _field(fields, "last_reescalated_at") or _field(fields, "escalated_at")
            ) or issue.created_at
            if reference is None or current - reference < self._config.stale_threshold:
                continue
            results.append(self._reescalate(issue, fields, current))
        return results

    def _reescalate(
        self, issue: MergeRequest, fields: dict[str, str], now: dt.datetime
    ) -> ReescalationResult:
        old = _field(fields, "severity") or SEVERITY_LOW
        try:
            count = int(_field(fields, "reescalation_count") or 0)
        except ValueError:
            count = 0
        limit = self._config.max_reescalations
        if count >= limit:
            return ReescalationResult(
                id=issue.id,
                title=issue.title,
                old_severity=old,
                new_severity=old,
                reescalation_num=count,
                skipped=True,
                skip_reason=f"already reescalated {count} times (max {limit})",
            )
        new = next_severity(old)
        result = ReescalationResult(
            id=issue.id,
            title=issue.title,
            old_severity=old,
            new_severity=new,
            reescalation_num=count + 1,
        )
        self._tracker.update_description_fields(
            issue.id,
            {
                "severity": new,
                "original_severity": _field(fields, "original_severity") or old,
                "reescalation_count": str(count + 1),
                "last_reescalated_at": config_util.format_rfc3339(now),
                "last_reescalated_by": self._sender,
            },
        )
        smelter_log.warning(
            f"[escalation] {severity_emoji(new)} reescalated {issue.id}: {old} -> {new}"
        )
        actions = self._config.route_for(new)
        self._send_mail(
            extract_mail_targets_from_actions(actions),
            subject=f"{severity_emoji(new)} [REESCALATED:{new.upper()}] {issue.title}",
            body=format_reescalation_mail_body(result, self._sender),
            metadata={"kind": "reescalation", "escalation": issue.id, "severity": new},
            severity=new,
        )
        execute_external_actions(actions, self._config, issue.id, new, issue.title)
        return result

    def _require(self, escalation_id: str) -> MergeRequest:
        issue = self._tracker.show(escalation_id)
        if issue is None or ESCALATION_LABEL not in issue.labels:
            raise EscalationError(f"escalation not found: {escalation_id}")
        return issue

    def acknowledge(self, escalation_id: str, *, now: dt.datetime | None = None) -> None:
        self._require(escalation_id)
        self._tracker.update_description_fields(
            escalation_id,
            {
                "acked_by": self._sender,
                "acked_at": config_util.format_rfc3339(now or config_util.utc_now()),
            },
        )
        smelter_log.success(f"[escalation] acknowledged {escalation_id}")

    def close(self, escalation_id: str, *, reason: str) -> None:
        self._require(escalation_id)
        self._tracker.update_description_fields(
            escalation_id, {"closed_by": self._sender, "closed_reason": reason}
        )
        self._tracker.close_with_reason(reason, escalation_id)
        smelter_log.success(f"[escalation] closed {escalation_id}")
