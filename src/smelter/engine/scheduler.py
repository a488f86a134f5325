"""Merge queue engine: the polling loop and one-cycle processing.

``Engine.run`` processes one cycle immediately, then waits for a tick, a stop
request or external cancellation. Cycles never overlap: the next wait starts
only after the current cycle returns, so a slow cycle delays the following
one instead of queueing ticks. External cancellation is checked before every
cycle, including the first; a running cycle always completes.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

from .. import log as smelter_log
from ..durations import format_duration
from ..errors import ConfigError, MergeQueueDisabledError, SmelterError
from ..models import MergeQueueConfig, MergeRequest
from .claim import claim
from .models import CycleOutcome, CycleStatus, ItemOutcome
from .pipeline import IntegrationPipeline
from .pool import WorkerPool
from .ports import (
    BranchCleaner,
    ConflictChecker,
    EscalationHook,
    Fetcher,
    Merger,
    Rebaser,
    TestRunner,
    Tracker,
)
from .reconcile import FailureHandler
from .selection import select_batch, select_next, target_key


def _log_info(message: str) -> None:
    smelter_log.info(f"[engine] {message}")


def _log_debug(message: str) -> None:
    smelter_log.debug(f"[engine] {message}")


class CancellationToken:
    """Thread-safe, idempotent cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def subscribe(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` once on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()


@dataclass(frozen=True)
class PipelineStages:
    fetcher: Fetcher
    conflict_checker: ConflictChecker
    test_runner: TestRunner
    merger: Merger
    cleaner: BranchCleaner
    rebaser: Rebaser | None = None


StagesFactory = Callable[[int], PipelineStages]


class Engine:
    """Merge queue engine for one rig.

    Args:
        tracker: Work tracker adapter.
        stages: Builds the pipeline stages for a worker slot. Slot ``0`` is
            the only slot when ``max_concurrent`` is 1.
        config: Initial configuration. When omitted, ``config_loader`` is
            called on ``run``.
        config_loader: Re-reads configuration for ``reload_config``.
        escalation: Terminal-failure hook.
        failure_threshold: Escalate an item after this many failures
            (0 disables).
    """

    def __init__(
        self,
        tracker: Tracker,
        stages: StagesFactory,
        *,
        config: MergeQueueConfig | None = None,
        config_loader: Callable[[], MergeQueueConfig] | None = None,
        escalation: EscalationHook | None = None,
        failure_threshold: int = 0,
    ) -> None:
        if config is None and config_loader is None:
            raise ValueError("Engine needs a config or a config_loader")
        self._tracker = tracker
        self._stages_factory = stages
        self._stages: dict[int, PipelineStages] = {}
        self._stages_lock = threading.Lock()
        self._config = config
        self._config_loader = config_loader
        self._escalation = escalation
        self._failure_threshold = failure_threshold
        self._handler: FailureHandler | None = None
        self._pool: WorkerPool | None = None
        self._stop = CancellationToken()
        self._reload_requested = threading.Event()

    @property
    def config(self) -> MergeQueueConfig:
        if self._config is None:
            assert self._config_loader is not None
            self._config = self._config_loader()
        return self._config

    @property
    def stopped(self) -> bool:
        return self._stop.cancelled

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle. Safe to call repeatedly."""
        self._stop.cancel()

    def request_reload(self) -> None:
        """Reload configuration at the next cycle boundary."""
        self._reload_requested.set()

    def reload_config(self) -> MergeQueueConfig:
        """Replace the active configuration with a freshly loaded one.

        Raises:
            ConfigError: The new configuration is invalid; the old one stays.
        """
        if self._config_loader is None:
            raise ConfigError("no configuration source to reload from")
        config = self._config_loader()
        self._config = config
        if self._handler is not None:
            self._handler = self._handler.reconfigure(config)
        if self._pool is not None and self._pool.size != config.worker_slots:
            self._pool.shutdown()
            self._pool = None
        _log_info(f"reloaded config: {_describe(config)}")
        return config

    def run(self, cancel: CancellationToken | None = None) -> None:
        """Process the queue until stopped or cancelled.

        Raises:
            ConfigError: Configuration could not be loaded.
            MergeQueueDisabledError: ``enabled`` is false.
        """
        config = self.config
        if not config.enabled:
            raise MergeQueueDisabledError(
                "merge queue is disabled",
                recovery_hint="set merge_queue.enabled to true in the rig config.json",
            )
        wake = threading.Event()
        self._stop.subscribe(wake.set)
        if cancel is not None:
            cancel.subscribe(wake.set)
        _log_info(f"started: {_describe(config)}")
        try:
            while cancel is None or not cancel.cancelled:
                self._run_cycle()
                interval = min(self.config.poll_interval.total_seconds(), threading.TIMEOUT_MAX)
                if wake.wait(interval):
                    break
        finally:
            self._close_pool()
            _log_info("stopped")

    def _run_cycle(self) -> None:
        if self._reload_requested.is_set():
            self._reload_requested.clear()
            try:
                self.reload_config()
            except ConfigError as exc:
                smelter_log.error(f"[engine] config reload failed, keeping previous: {exc}")
        try:
            outcome = self.process_once()
        except SmelterError as exc:
            smelter_log.error(f"[engine] cycle aborted: {exc}")
            return
        except Exception as exc:
            smelter_log.error(f"[engine] cycle aborted by unexpected error: {exc!r}")
            return
        _log_debug(f"cycle {outcome.status.value} {', '.join(outcome.item_ids)}".rstrip())

    def process_once(self) -> CycleOutcome:
        """Run one processing cycle.

        Raises:
            TrackerError: Listing ready work failed.
            ClaimError: Claiming the selected item failed (single worker).
        """
        config = self.config
        self._handler_for(config)
        if config.worker_slots == 1:
            item = select_next(self._tracker)
            if item is None:
                _log_debug("queue empty")
                return CycleOutcome()
            _log_info(f"processing {item.id}: {item.title}")
            stages = self._stages_for(0)
            claim(self._tracker, item)
            return CycleOutcome((self._drive(item, stages, config),))

        pool = self._ensure_pool(config.worker_slots)
        items = select_batch(
            self._tracker, config, limit=pool.size, busy_targets=pool.slots.busy()
        )
        if not items:
            _log_debug("queue empty")
            return CycleOutcome()
        _log_info(f"processing {len(items)} item(s): {', '.join(item.id for item in items)}")
        outcomes = pool.run_batch(
            items,
            lambda item, slot: self._claim_and_drive(item, slot, config),
            key=lambda item: target_key(item, config),
        )
        return CycleOutcome(tuple(outcomes))

    def _claim_and_drive(
        self, item: MergeRequest, slot: int, config: MergeQueueConfig
    ) -> ItemOutcome:
        try:
            stages = self._stages_for(slot)
            claim(self._tracker, item)
        except SmelterError as exc:
            smelter_log.warning(f"[engine] {item.id}: skipped: {exc}")
            return ItemOutcome(item_id=item.id, status=CycleStatus.SKIPPED)
        return self._drive(item, stages, config)

    def _drive(
        self, item: MergeRequest, stages: PipelineStages, config: MergeQueueConfig
    ) -> ItemOutcome:
        pipeline = IntegrationPipeline(
            config,
            fetcher=stages.fetcher,
            conflict_checker=stages.conflict_checker,
            test_runner=stages.test_runner,
            merger=stages.merger,
            cleaner=stages.cleaner,
        )
        result = pipeline.process(item)
        final = self._handler_for(config).handle(
            item, result, resubmit=pipeline.process, rebaser=stages.rebaser
        )
        status = CycleStatus.MERGED if final.success else CycleStatus.FAILED
        return ItemOutcome(item_id=item.id, status=status, result=final)

    def _stages_for(self, slot: int) -> PipelineStages:
        with self._stages_lock:
            stages = self._stages.get(slot)
            if stages is None:
                stages = self._stages_factory(slot)
                self._stages[slot] = stages
            return stages

    def _handler_for(self, config: MergeQueueConfig) -> FailureHandler:
        if self._handler is None:
            self._handler = FailureHandler(
                self._tracker,
                config,
                escalation=self._escalation,
                failure_threshold=self._failure_threshold,
            )
        return self._handler

    def _ensure_pool(self, size: int) -> WorkerPool:
        if self._pool is None:
            self._pool = WorkerPool(size)
        return self._pool

    def _close_pool(self) -> None:
        if self._pool is not None:
            self._pool.shutdown()
            self._pool = None


def _describe(config: MergeQueueConfig) -> str:
    return (
        f"target={config.target_branch} poll={format_duration(config.poll_interval)} "
        f"on_conflict={config.on_conflict} workers={config.worker_slots}"
    )
