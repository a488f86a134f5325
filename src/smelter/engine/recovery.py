"""Recovery for merge requests left in progress by a crashed engine."""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass

from .. import beads
from .. import config as config_util
from .. import log as smelter_log
from ..errors import SmelterError
from ..models import MERGE_REQUEST_TYPE, MergeRequest
from .ports import Tracker

RECLAIM_NOTE = "merge queue: reclaimed stale in_progress claim"


@dataclass(frozen=True)
class ReclaimAction:
    item_id: str
    description: str
    apply: Callable[[], None]


def _last_touched(item: MergeRequest) -> dt.datetime | None:
    stamp = item.updated_at or item.created_at
    if stamp is not None and stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=dt.timezone.utc)
    return stamp


def collect_stale_claims(
    tracker: Tracker,
    *,
    older_than: dt.timedelta,
    now: dt.datetime | None = None,
) -> list[ReclaimAction]:
    """Plan a reopen for every in-progress merge request idle past ``older_than``.

    Items without any timestamp are left alone.
    """
    current = now or config_util.utc_now()
    actions: list[ReclaimAction] = []
    in_progress = tracker.list_issues(
        status=beads.STATUS_IN_PROGRESS, issue_type=MERGE_REQUEST_TYPE
    )
    for item in sorted(in_progress, key=lambda issue: issue.id):
        if item.issue_type not in (None, MERGE_REQUEST_TYPE):
            continue
        touched = _last_touched(item)
        if touched is None or current - touched <= older_than:
            continue

        def _apply(item_id: str = item.id) -> None:
            tracker.update(item_id, status=beads.STATUS_OPEN, notes=RECLAIM_NOTE)

        age = current - touched
        actions.append(
            ReclaimAction(
                item_id=item.id,
                description=f"Reopen {item.id} (in progress for {_format_age(age)})",
                apply=_apply,
            )
        )
    return actions


def _format_age(age: dt.timedelta) -> str:
    hours, remainder = divmod(int(age.total_seconds()), 3600)
    return f"{hours}h{remainder // 60:02d}m"


def reclaim_stale_claims(
    tracker: Tracker,
    *,
    older_than: dt.timedelta,
    now: dt.datetime | None = None,
    dry_run: bool = False,
) -> list[str]:
    """Reopen stale in-progress merge requests and return their ids.

    Failures on individual items are logged and skipped.
    """
    reclaimed: list[str] = []
    for action in collect_stale_claims(tracker, older_than=older_than, now=now):
        if dry_run:
            smelter_log.info(f"[reclaim] would: {action.description}")
            reclaimed.append(action.item_id)
            continue
        try:
            action.apply()
        except SmelterError as exc:
            smelter_log.warning(f"[reclaim] {action.item_id}: {exc}")
            continue
        smelter_log.success(f"[reclaim] {action.description}")
        reclaimed.append(action.item_id)
    return reclaimed
