"""Git helper functions used by the integration pipeline.

All helpers operate on a working clone (``repo_dir``) via ``git -C``. A
missing ``git`` executable always raises ``exec.CommandExecutionError``. A
failing command raises it too, except in the read-only queries, which return
``None``/``False``/``[]`` instead.
"""

from __future__ import annotations

from pathlib import Path

from . import exec as exec_util
from . import log as smelter_log

DEFAULT_REMOTE = "origin"


def git_command(args: list[str], *, git_path: str | None = None) -> list[str]:
    """Build a git command using an optional executable path.

    Example:
        >>> git_command(["status"], git_path=" ")
        ['git', 'status']
    """
    resolved = git_path.strip() if isinstance(git_path, str) else ""
    if not resolved:
        resolved = "git"
    return [resolved, *args]


def _request(
    repo_dir: Path, args: list[str], *, git_path: str | None
) -> exec_util.CommandRequest:
    return exec_util.CommandRequest(
        argv=tuple(git_command(["-C", str(repo_dir), *args], git_path=git_path))
    )


def run_git(
    repo_dir: Path,
    args: list[str],
    *,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> exec_util.CommandResult:
    """Run git and return the result regardless of exit status.

    Raises:
        exec.CommandExecutionError: The git executable is missing.
    """
    request = _request(repo_dir, args, git_path=git_path)
    smelter_log.trace(f"[git] {' '.join(args)}")
    result = exec_util.run_with_runner(request, runner=runner)
    if result is None:
        raise exec_util.CommandExecutionError(
            request=request, detail=exec_util.missing_command_detail(request)
        )
    return result


def run_git_checked(
    repo_dir: Path,
    args: list[str],
    *,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> exec_util.CommandResult:
    """Run git and raise ``CommandExecutionError`` on a non-zero exit."""
    result = run_git(repo_dir, args, git_path=git_path, runner=runner)
    if not result.ok:
        request = _request(repo_dir, args, git_path=git_path)
        raise exec_util.CommandExecutionError(
            request=request,
            result=result,
            detail=exec_util.command_failure_detail(request, result),
        )
    return result


def remote_ref(branch: str, *, remote: str = DEFAULT_REMOTE) -> str:
    """Return the remote-tracking ref name for a branch.

    Example:
        >>> remote_ref("polecat/nux")
        'origin/polecat/nux'
    """
    return f"{remote}/{branch}"


def git_fetch(
    repo_dir: Path,
    branches: list[str],
    *,
    remote: str = DEFAULT_REMOTE,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> None:
    """Fetch branches into ``refs/remotes/<remote>/``."""
    refspecs = [f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}" for branch in branches]
    run_git_checked(
        repo_dir,
        ["fetch", "--prune", remote, *refspecs],
        git_path=git_path,
        runner=runner,
    )


def git_has_remote_branch(
    repo_dir: Path,
    branch: str,
    *,
    remote: str = DEFAULT_REMOTE,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> bool | None:
    """Check whether ``branch`` exists on the remote.

    Returns:
        ``True``/``False``, or ``None`` when ``ls-remote`` fails.
    """
    ref = f"refs/heads/{branch}"
    result = run_git(
        repo_dir, ["ls-remote", "--heads", remote, ref], git_path=git_path, runner=runner
    )
    if result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] == ref:
            return True
    return False


def git_rev_parse(
    repo_dir: Path,
    ref: str,
    *,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> str | None:
    """Resolve a ref to its commit hash, or ``None`` on failure."""
    result = run_git(repo_dir, ["rev-parse", "--verify", ref], git_path=git_path, runner=runner)
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_unmerged_paths(
    repo_dir: Path,
    *,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> list[str]:
    """Return paths left in a conflicted state by a merge or rebase."""
    result = run_git(
        repo_dir, ["diff", "--name-only", "--diff-filter=U"], git_path=git_path, runner=runner
    )
    if result.returncode != 0:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def git_merge_in_progress(
    repo_dir: Path,
    *,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> bool:
    return git_rev_parse(repo_dir, "MERGE_HEAD", git_path=git_path, runner=runner) is not None


def git_abort_merge(
    repo_dir: Path,
    *,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> None:
    """Drop any half-finished merge and reset the index to ``HEAD``."""
    run_git(repo_dir, ["merge", "--abort"], git_path=git_path, runner=runner)
    run_git(repo_dir, ["reset", "--hard", "HEAD"], git_path=git_path, runner=runner)


def git_worktree_add(
    repo_dir: Path,
    path: Path,
    *,
    git_path: str | None = None,
    runner: exec_util.CommandRunner | None = None,
) -> None:
    """Attach a detached worktree at ``path`` unless one already exists there."""
    if (path / ".git").exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    run_git_checked(
        repo_dir, ["worktree", "add", "--detach", str(path)], git_path=git_path, runner=runner
    )
