"""Bounded worker pool for ``max_concurrent > 1``."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import TypeVar

from .. import log as smelter_log

T = TypeVar("T")
R = TypeVar("R")


class BranchSlots:
    """One lock per effective target branch.

    Holding a slot means this process is driving a merge into that target.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._held: set[str] = set()

    def _lock_for(self, target: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(target)
            if lock is None:
                lock = threading.Lock()
                self._locks[target] = lock
            return lock

    @contextmanager
    def hold(self, target: str | None) -> Iterator[None]:
        """Block until ``target`` is free, then hold it for the block.

        ``None`` (target unknown) holds nothing.
        """
        if target is None:
            yield
            return
        lock = self._lock_for(target)
        with lock:
            with self._guard:
                self._held.add(target)
            try:
                yield
            finally:
                with self._guard:
                    self._held.discard(target)

    def busy(self) -> frozenset[str]:
        with self._guard:
            return frozenset(self._held)


class WorkerPool:
    """Run a batch of work items on up to ``size`` threads.

    Each task receives a worker slot index in ``range(size)``; no two running
    tasks share a slot, so a slot can own a working copy.
    """

    def __init__(self, size: int) -> None:
        self.size = max(1, size)
        self.slots = BranchSlots()
        self._executor = ThreadPoolExecutor(
            max_workers=self.size, thread_name_prefix="smelter-worker"
        )
        self._free: queue.Queue[int] = queue.Queue()
        for index in range(self.size):
            self._free.put(index)

    def run_batch(
        self,
        items: Sequence[T],
        work: Callable[[T, int], R],
        *,
        key: Callable[[T], str | None],
    ) -> list[R]:
        """Run ``work(item, slot)`` for every item and wait for all of them.

        Results come back in ``items`` order. Items sharing a key never run
        at the same time.
        """

        def _task(item: T) -> R:
            slot = self._free.get()
            try:
                with self.slots.hold(key(item)):
                    return work(item, slot)
            finally:
                self._free.put(slot)

        futures = [self._executor.submit(_task, item) for item in items]
        smelter_log.trace(f"[engine] dispatched {len(futures)} item(s) to {self.size} worker(s)")
        return [future.result() for future in futures]

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
