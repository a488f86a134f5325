"""Git- and subprocess-backed pipeline stages.

``GitWorkspace`` drives a rig's working clone. Merges are staged on a scratch
branch (``smelter/merge``, suffixed with the worker slot above 0) created
from the remote target, committed, then pushed to the target. The source
branch is never checked out directly.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from .. import exec as exec_util
from .. import git
from .. import log as smelter_log
from ..errors import CleanupError, FetchError, MergeError, RebaseError, StageError
from ..models import MergeRequest, MRFields
from .models import TestOutcome

MERGE_WORK_BRANCH = "smelter/merge"
REBASE_WORK_BRANCH = "smelter/rebase"


@contextmanager
def _stage_errors(error: type[StageError], action: str) -> Iterator[None]:
    """Re-raise git execution failures (e.g. a missing executable) as ``error``."""
    try:
        yield
    except exec_util.CommandExecutionError as exc:
        raise error(f"{action}: {exc.detail}") from exc


@dataclass
class GitWorkspace:
    """Fetcher, conflict checker, merger, cleaner and rebaser for one clone."""

    repo_dir: Path
    remote: str = git.DEFAULT_REMOTE
    git_path: str | None = None
    slot: int = 0
    runner: exec_util.CommandRunner | None = field(default=None, compare=False)

    def _work_branch(self, base: str) -> str:
        return base if self.slot == 0 else f"{base}-{self.slot}"

    def _run(self, args: list[str]) -> exec_util.CommandResult:
        return git.run_git(self.repo_dir, args, git_path=self.git_path, runner=self.runner)

    def _checked(self, args: list[str], error: type[Exception]) -> exec_util.CommandResult:
        try:
            return git.run_git_checked(
                self.repo_dir, args, git_path=self.git_path, runner=self.runner
            )
        except exec_util.CommandExecutionError as exc:
            raise error(exc.detail) from exc

    def _remote_ref(self, branch: str) -> str:
        return git.remote_ref(branch, remote=self.remote)

    def fetch(self, fields: MRFields, target: str) -> None:
        try:
            git.git_fetch(
                self.repo_dir,
                [fields.branch, target],
                remote=self.remote,
                git_path=self.git_path,
                runner=self.runner,
            )
        except exec_util.CommandExecutionError as exc:
            raise FetchError(f"fetching {fields.branch} and {target}: {exc.detail}") from exc

    def ensure_branch(self, branch: str, *, base: str) -> None:
        """Create ``branch`` on the remote from ``base`` if it does not exist."""
        with _stage_errors(FetchError, f"querying {self.remote} for {branch}"):
            exists = git.git_has_remote_branch(
                self.repo_dir,
                branch,
                remote=self.remote,
                git_path=self.git_path,
                runner=self.runner,
            )
        if exists is None:
            raise FetchError(f"cannot query {self.remote} for {branch}")
        if exists:
            return
        smelter_log.info(f"[engine] creating {branch} from {base}")
        try:
            git.git_fetch(
                self.repo_dir,
                [base],
                remote=self.remote,
                git_path=self.git_path,
                runner=self.runner,
            )
        except exec_util.CommandExecutionError as exc:
            raise FetchError(f"fetching {base}: {exc.detail}") from exc
        self._checked(
            ["push", self.remote, f"{self._remote_ref(base)}:refs/heads/{branch}"], FetchError
        )

    def check_conflicts(self, fields: MRFields, target: str) -> list[str]:
        work_branch = self._work_branch(MERGE_WORK_BRANCH)
        self._checked(["checkout", "-B", work_branch, self._remote_ref(target)], MergeError)
        with _stage_errors(MergeError, f"merging {fields.branch} into {target}"):
            result = self._run(
                ["merge", "--no-ff", "--no-commit", self._remote_ref(fields.branch)]
            )
            if result.ok:
                return []
            paths = git.git_unmerged_paths(
                self.repo_dir, git_path=self.git_path, runner=self.runner
            )
        if paths:
            return paths
        raise MergeError(
            f"merging {fields.branch} into {target}: {result.detail or 'git merge failed'}"
        )

    def abort(self) -> None:
        with _stage_errors(MergeError, "aborting staged merge"):
            git.git_abort_merge(self.repo_dir, git_path=self.git_path, runner=self.runner)

    def merge(self, item: MergeRequest, fields: MRFields, target: str) -> str:
        message = f"Merge {fields.branch} into {target} ({item.id})"
        with _stage_errors(MergeError, f"merging {fields.branch} into {target}"):
            if git.git_merge_in_progress(
                self.repo_dir, git_path=self.git_path, runner=self.runner
            ):
                self._checked(["commit", "--no-edit", "-m", message], MergeError)
            self._checked(["push", self.remote, f"HEAD:refs/heads/{target}"], MergeError)
            sha = git.git_rev_parse(
                self.repo_dir, "HEAD", git_path=self.git_path, runner=self.runner
            )
        if not sha:
            raise MergeError(f"merged {fields.branch} but HEAD could not be resolved")
        return sha

    def delete_branch(self, branch: str) -> None:
        self._checked(["push", self.remote, "--delete", branch], CleanupError)
        with _stage_errors(CleanupError, f"deleting local {branch}"):
            self._run(["branch", "-D", branch])

    def rebase(self, fields: MRFields, target: str) -> None:
        """Rebase the source branch onto the target and force-push it."""
        source_ref = self._remote_ref(fields.branch)
        try:
            git.git_fetch(
                self.repo_dir,
                [fields.branch, target],
                remote=self.remote,
                git_path=self.git_path,
                runner=self.runner,
            )
        except exec_util.CommandExecutionError as exc:
            raise RebaseError(f"fetching before rebase: {exc.detail}") from exc
        with _stage_errors(RebaseError, f"rebasing {fields.branch} onto {target}"):
            old_sha = git.git_rev_parse(
                self.repo_dir, source_ref, git_path=self.git_path, runner=self.runner
            )
            work_branch = self._work_branch(REBASE_WORK_BRANCH)
            self._checked(["checkout", "-B", work_branch, source_ref], RebaseError)
            result = self._run(["rebase", self._remote_ref(target)])
            if not result.ok:
                self._run(["rebase", "--abort"])
                raise RebaseError(
                    f"rebasing {fields.branch} onto {target}: "
                    f"{result.detail or 'git rebase failed'}"
                )
        lease = f"--force-with-lease={fields.branch}:{old_sha}" if old_sha else "--force-with-lease"
        self._checked(
            ["push", lease, self.remote, f"HEAD:refs/heads/{fields.branch}"], RebaseError
        )


@dataclass
class CommandTestRunner:
    """Run the configured test command in the working clone."""

    __test__ = False

    cwd: Path
    timeout_seconds: float | None = None
    runner: exec_util.CommandRunner | None = field(default=None, compare=False)

    def run_tests(self, command: str, *, attempts: int) -> TestOutcome:
        try:
            argv = tuple(shlex.split(command))
        except ValueError as exc:
            return TestOutcome(passed=False, attempts=0, detail=f"invalid test_command: {exc}")
        if not argv:
            return TestOutcome(passed=True, attempts=0)
        request = exec_util.CommandRequest(
            argv=argv, cwd=self.cwd, timeout_seconds=self.timeout_seconds
        )
        total = max(1, attempts)
        detail = ""
        for attempt in range(1, total + 1):
            result = exec_util.run_with_runner(request, runner=self.runner)
            if result is None:
                return TestOutcome(
                    passed=False,
                    attempts=attempt,
                    detail=exec_util.missing_command_detail(request),
                )
            if result.ok:
                return TestOutcome(passed=True, attempts=attempt)
            detail = exec_util.command_failure_detail(request, result)
            if attempt < total:
                smelter_log.warning(f"[engine] test attempt {attempt}/{total} failed; retrying")
        return TestOutcome(passed=False, attempts=total, detail=_tail(detail))


def _tail(text: str, *, lines: int = 20) -> str:
    parts = text.splitlines()
    if len(parts) <= lines:
        return text
    return "\n".join(parts[-lines:])
