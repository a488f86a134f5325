"""Reconcile pipeline results back into the tracker.

Success closes the item with its merge commit. Any failure reopens it with a
diagnostic note. A conflict under ``auto_rebase`` gets one rebase and one
resubmission before falling back to reopening. Items that keep failing, that
cannot be parsed, or that cannot be reopened are escalated.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from .. import beads
from .. import log as smelter_log
from ..errors import MRFieldsError, SmelterError
from ..models import (
    ON_CONFLICT_ASSIGN_BACK,
    ON_CONFLICT_AUTO_REBASE,
    ON_CONFLICT_VALUES,
    MergeQueueConfig,
    MergeRequest,
    parse_mr_fields,
)
from .models import KIND_OTHER, ProcessResult
from .ports import EscalationHook, Rebaser, Tracker

SEVERITY_MERGE_FAILURE = "medium"
SEVERITY_STRANDED = "high"


def merged_reason(merge_commit: str | None) -> str:
    """Close reason recorded on a merged item.

    Example:
        >>> merged_reason("abc123")
        'merged: abc123'
    """
    return f"merged: {merge_commit or 'unknown'}"


def failure_note(result: ProcessResult) -> str:
    """Diagnostic attached to a reopened item.

    Example:
        >>> failure_note(ProcessResult.failed_tests("tests failed after 2 attempt(s)"))
        'merge queue: tests_failed: tests failed after 2 attempt(s)'
    """
    return f"merge queue: {result.kind}: {result.error or 'unknown error'}"


def resolve_conflict_strategy(value: str) -> str:
    """Return a known ``on_conflict`` strategy; unknown values fall back to assign-back."""
    if value in ON_CONFLICT_VALUES:
        return value
    smelter_log.warning(
        f"[engine] unknown on_conflict {value!r}; using {ON_CONFLICT_ASSIGN_BACK}"
    )
    return ON_CONFLICT_ASSIGN_BACK


class FailureHandler:
    """Apply a ``ProcessResult`` to the tracker. ``handle`` never raises."""

    def __init__(
        self,
        tracker: Tracker,
        config: MergeQueueConfig,
        *,
        resubmit: Callable[[MergeRequest], ProcessResult] | None = None,
        rebaser: Rebaser | None = None,
        escalation: EscalationHook | None = None,
        failure_threshold: int = 0,
    ) -> None:
        self._tracker = tracker
        self._config = config
        self._resubmit = resubmit
        self._rebaser = rebaser
        self._escalation = escalation
        self._failure_threshold = failure_threshold
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    def handle(
        self,
        item: MergeRequest,
        result: ProcessResult,
        *,
        resubmit: Callable[[MergeRequest], ProcessResult] | None = None,
        rebaser: Rebaser | None = None,
    ) -> ProcessResult:
        """Reconcile ``result`` for ``item`` and return the final result.

        ``resubmit`` and ``rebaser`` override the handler defaults for one call
        (pool workers each drive their own working copy).
        """
        try:
            return self._handle(
                item,
                result,
                resubmit=resubmit or self._resubmit,
                rebaser=rebaser or self._rebaser,
            )
        except Exception as exc:
            smelter_log.error(f"[engine] {item.id}: reconciliation failed: {exc!r}")
            if not result.success:
                self._reopen_after_error(item, result)
            return result

    def _handle(
        self,
        item: MergeRequest,
        result: ProcessResult,
        *,
        resubmit: Callable[[MergeRequest], ProcessResult] | None,
        rebaser: Rebaser | None,
    ) -> ProcessResult:
        if result.success:
            self._close(item, result)
            return result
        if result.conflict:
            strategy = resolve_conflict_strategy(self._config.on_conflict)
            if strategy == ON_CONFLICT_AUTO_REBASE:
                retried = self._rebase_and_resubmit(item, resubmit=resubmit, rebaser=rebaser)
                if retried is not None:
                    if retried.success:
                        self._close(item, retried)
                        return retried
                    result = retried
        self._reopen(item, result)
        return result

    def _close(self, item: MergeRequest, result: ProcessResult) -> None:
        reason = merged_reason(result.merge_commit)
        try:
            self._tracker.close_with_reason(reason, item.id)
        except SmelterError as exc:
            smelter_log.warning(f"[engine] {item.id}: merged but close failed: {exc}")
            return
        with self._lock:
            self._failures.pop(item.id, None)
        smelter_log.success(f"[engine] {item.id}: {reason}")

    def _rebase_and_resubmit(
        self,
        item: MergeRequest,
        *,
        resubmit: Callable[[MergeRequest], ProcessResult] | None,
        rebaser: Rebaser | None,
    ) -> ProcessResult | None:
        if rebaser is None or resubmit is None:
            return None
        try:
            fields = parse_mr_fields(item)
            target = fields.effective_target(self._config)
            smelter_log.info(
                f"[engine] {item.id}: conflict; rebasing {fields.branch} onto {target}"
            )
            rebaser.rebase(fields, target)
        except Exception as exc:
            smelter_log.warning(f"[engine] {item.id}: auto-rebase failed: {exc}")
            return None
        retried = resubmit(item)
        if not retried.success:
            smelter_log.warning(
                f"[engine] {item.id}: resubmission after rebase failed: {retried.error}"
            )
        return retried

    def _reopen_after_error(self, item: MergeRequest, result: ProcessResult) -> None:
        try:
            self._tracker.update(item.id, status=beads.STATUS_OPEN, notes=failure_note(result))
        except Exception as exc:
            smelter_log.error(
                f"[engine] {item.id}: reopen failed, item left in progress: {exc!r}"
            )

    def _reopen(self, item: MergeRequest, result: ProcessResult) -> None:
        smelter_log.error(f"[engine] {item.id}: {result.kind}: {result.error}")
        try:
            self._tracker.update(item.id, status=beads.STATUS_OPEN, notes=failure_note(result))
        except SmelterError as exc:
            smelter_log.warning(f"[engine] {item.id}: reopen failed: {exc}")
            self._escalate(
                item,
                severity=SEVERITY_STRANDED,
                title=f"Merge request {item.id} stuck in progress",
                reason=f"reopen failed after {result.kind}: {exc}",
            )
            return
        count = self._record_failure(item.id)
        if result.kind == KIND_OTHER and result.stage == MRFieldsError.stage and count == 1:
            self._escalate(
                item,
                severity=SEVERITY_MERGE_FAILURE,
                title=f"Merge request {item.id} cannot be parsed",
                reason=result.error,
            )
        elif self._failure_threshold > 0 and count == self._failure_threshold:
            self._escalate(
                item,
                severity=SEVERITY_MERGE_FAILURE,
                title=f"Merge request {item.id} failed {count} times",
                reason=failure_note(result),
            )

    def reconfigure(self, config: MergeQueueConfig) -> FailureHandler:
        """Return a handler for ``config`` that keeps this handler's failure counts."""
        handler = FailureHandler(
            self._tracker,
            config,
            resubmit=self._resubmit,
            rebaser=self._rebaser,
            escalation=self._escalation,
            failure_threshold=self._failure_threshold,
        )
        handler._failures = self._failures
        handler._lock = self._lock
        return handler

    def _record_failure(self, item_id: str) -> int:
        with self._lock:
            count = self._failures.get(item_id, 0) + 1
            self._failures[item_id] = count
            return count

    def failure_count(self, item_id: str) -> int:
        with self._lock:
            return self._failures.get(item_id, 0)

    def _escalate(self, item: MergeRequest, *, severity: str, title: str, reason: str) -> None:
        if self._escalation is None:
            return
        try:
            escalation_id = self._escalation.escalate(
                title=title, severity=severity, reason=reason, related=item.id
            )
        except SmelterError as exc:
            smelter_log.warning(f"[engine] {item.id}: escalation failed: {exc}")
            return
        smelter_log.warning(f"[engine] {item.id}: escalated as {escalation_id}")
