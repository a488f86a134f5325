"""Implementation for the ``smelter run`` and ``smelter once`` commands."""

from __future__ import annotations

import signal
from pathlib import Path

from .. import config, git, paths
from .. import exec as exec_util
from .. import log as smelter_log
from ..engine import CancellationToken, CycleStatus, Engine, PipelineStages
from ..engine.lock import engine_lock
from ..engine.scheduler import StagesFactory
from ..engine.stages import CommandTestRunner, GitWorkspace
from ..errors import MergeQueueDisabledError, SmelterError
from ..io import die, say
from .resolve import build_escalator, build_tracker, fail, resolve_rig


def stages_factory(rig: Path, *, test_timeout: float | None = None) -> StagesFactory:
    """Return a factory building git-backed stages for each worker slot."""

    def _build(slot: int) -> PipelineStages:
        repo_dir = paths.worker_worktree_path(rig, slot)
        if slot:
            try:
                git.git_worktree_add(rig, repo_dir)
            except exec_util.CommandExecutionError as exc:
                raise SmelterError(f"preparing worker {slot} worktree: {exc.detail}") from exc
        workspace = GitWorkspace(repo_dir, slot=slot)
        return PipelineStages(
            fetcher=workspace,
            conflict_checker=workspace,
            test_runner=CommandTestRunner(cwd=repo_dir, timeout_seconds=test_timeout),
            merger=workspace,
            cleaner=workspace,
            rebaser=workspace,
        )

    return _build


def build_engine(rig: Path, *, test_timeout: float | None = None) -> Engine:
    tracker = build_tracker(rig)
    escalator = build_escalator(rig, tracker)
    return Engine(
        tracker,
        stages_factory(rig, test_timeout=test_timeout),
        config_loader=lambda: config.load_rig_merge_queue_config(rig),
        escalation=escalator,
        failure_threshold=escalator.config.merge_failure_threshold,
    )


def _install_signal_handlers(engine: Engine, token: CancellationToken) -> None:
    def _cancel(signum: int, _frame: object) -> None:
        smelter_log.info(f"[engine] received {signal.Signals(signum).name}; stopping after cycle")
        token.cancel()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda _signum, _frame: engine.request_reload())


def run(args: object) -> None:
    """Run the merge queue until interrupted."""
    rig = resolve_rig(args)
    test_timeout = getattr(args, "test_timeout", None)
    smelter_log.set_timestamps(True)
    try:
        with engine_lock(rig):
            engine = build_engine(rig, test_timeout=test_timeout)
            token = CancellationToken()
            _install_signal_handlers(engine, token)
            engine.run(token)
    except SmelterError as exc:
        fail(exc)


def once(args: object) -> None:
    """Process a single cycle and report what happened."""
    rig = resolve_rig(args)
    test_timeout = getattr(args, "test_timeout", None)
    try:
        with engine_lock(rig):
            engine = build_engine(rig, test_timeout=test_timeout)
            if not engine.config.enabled:
                raise MergeQueueDisabledError(
                    "merge queue is disabled",
                    recovery_hint="set merge_queue.enabled to true in the rig config.json",
                )
            outcome = engine.process_once()
    except SmelterError as exc:
        fail(exc)
    if outcome.status is CycleStatus.IDLE:
        say("No merge requests ready.")
        return
    for item in outcome.items:
        result = item.result
        if result is not None and result.success:
            say(f"{item.item_id}: merged {result.merge_commit}")
        elif result is not None:
            say(f"{item.item_id}: {result.kind}: {result.error}")
        else:
            say(f"{item.item_id}: {item.status.value}")
    if outcome.status is CycleStatus.FAILED:
        die("one or more merge requests failed")
