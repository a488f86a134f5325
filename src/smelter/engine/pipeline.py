"""Integration pipeline: parse, fetch, conflict check, test, merge, cleanup."""

from __future__ import annotations

from .. import log as smelter_log
from ..errors import MRFieldsError, SmelterError, StageError
from ..models import INTEGRATION_BRANCH_PREFIX, MergeQueueConfig, MergeRequest, parse_mr_fields
from .models import ProcessResult
from .ports import BranchCleaner, ConflictChecker, Fetcher, Merger, TestRunner


def _log(item_id: str, message: str) -> None:
    smelter_log.debug(f"[engine] {item_id}: {message}")


class IntegrationPipeline:
    """Drive one merge request through every integration stage in order.

    ``process`` never raises: stage failures become a failed
    ``ProcessResult``.
    """

    def __init__(
        self,
        config: MergeQueueConfig,
        *,
        fetcher: Fetcher,
        conflict_checker: ConflictChecker,
        test_runner: TestRunner,
        merger: Merger,
        cleaner: BranchCleaner,
    ) -> None:
        self.config = config
        self._fetcher = fetcher
        self._conflicts = conflict_checker
        self._tests = test_runner
        self._merger = merger
        self._cleaner = cleaner

    def process(self, item: MergeRequest) -> ProcessResult:
        try:
            fields = parse_mr_fields(item)
        except MRFieldsError as exc:
            return ProcessResult.failed(str(exc), stage=exc.stage)
        target = fields.effective_target(self.config)
        staged = False
        try:
            if target.startswith(INTEGRATION_BRANCH_PREFIX) and target != fields.target:
                self._fetcher.ensure_branch(target, base=self.config.target_branch)
            _log(item.id, f"fetch {fields.branch} -> {target}")
            self._fetcher.fetch(fields, target)

            staged = True
            paths = self._conflicts.check_conflicts(fields, target)
            if paths:
                return ProcessResult.conflicted(
                    f"merge conflict with {target}: {', '.join(paths)}", tuple(paths)
                )

            if self.config.run_tests:
                command = self.config.test_command.strip()
                if not command:
                    _log(item.id, "run_tests is on but test_command is empty; skipping tests")
                else:
                    outcome = self._tests.run_tests(command, attempts=self.config.test_attempts)
                    if not outcome.passed:
                        detail = f": {outcome.detail}" if outcome.detail else ""
                        return ProcessResult.failed_tests(
                            f"tests failed after {outcome.attempts} attempt(s){detail}"
                        )
                    if outcome.attempts > 1:
                        smelter_log.warning(
                            f"[engine] {item.id}: tests passed on attempt "
                            f"{outcome.attempts} (flaky)"
                        )

            merge_commit = self._merger.merge(item, fields, target)
            staged = False
        except StageError as exc:
            return ProcessResult.failed(str(exc), stage=exc.stage)
        except SmelterError as exc:
            return ProcessResult.failed(str(exc))
        except Exception as exc:
            smelter_log.error(f"[engine] {item.id}: unexpected pipeline error: {exc!r}")
            return ProcessResult.failed(f"unexpected error: {exc}")
        finally:
            if staged:
                self._abort(item.id)

        if self.config.delete_merged_branches:
            try:
                self._cleaner.delete_branch(fields.branch)
            except Exception as exc:
                smelter_log.warning(
                    f"[engine] {item.id}: merged {merge_commit} but cleanup failed: {exc}"
                )
        return ProcessResult.merged(merge_commit)

    def _abort(self, item_id: str) -> None:
        try:
            self._conflicts.abort()
        except Exception as exc:
            smelter_log.warning(f"[engine] {item_id}: aborting staged merge failed: {exc}")
