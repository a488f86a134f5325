"""Merge request selection."""

from __future__ import annotations

from collections.abc import Collection

from ..errors import MRFieldsError
from ..models import MERGE_REQUEST_TYPE, MergeQueueConfig, MergeRequest, parse_mr_fields
from .ports import Tracker


def select_next(tracker: Tracker) -> MergeRequest | None:
    """Return the first ready merge request, or ``None`` when the queue is empty.

    Ordering is the tracker's: priority first, then age.
    """
    ready = tracker.ready_with_type(MERGE_REQUEST_TYPE)
    if not ready:
        return None
    return ready[0]


def target_key(item: MergeRequest, config: MergeQueueConfig) -> str | None:
    """Return the effective target of ``item``, or ``None`` if it cannot be parsed."""
    try:
        return parse_mr_fields(item).effective_target(config)
    except MRFieldsError:
        return None


def select_batch(
    tracker: Tracker,
    config: MergeQueueConfig,
    *,
    limit: int,
    busy_targets: Collection[str] = (),
) -> list[MergeRequest]:
    """Pick up to ``limit`` ready items, at most one per effective target.

    Items whose target is busy or already picked are left for a later cycle.
    Unparseable items are still selected so the pipeline can reopen them.
    """
    if limit <= 0:
        return []
    picked: list[MergeRequest] = []
    taken = set(busy_targets)
    for item in tracker.ready_with_type(MERGE_REQUEST_TYPE):
        key = target_key(item, config)
        if key is not None:
            if key in taken:
                continue
            taken.add(key)
        picked.append(item)
        if len(picked) >= limit:
            break
    return picked
