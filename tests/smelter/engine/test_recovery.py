from __future__ import annotations

import datetime as dt

from smelter.engine.recovery import RECLAIM_NOTE, collect_stale_claims, reclaim_stale_claims
from tests.smelter.helpers import BASE_TIME, FakeTracker, make_item

NOW = BASE_TIME + dt.timedelta(hours=3)


def _stale_tracker() -> FakeTracker:
    return FakeTracker(
        [
            make_item("sm-2", status="in_progress", created_at=BASE_TIME),
            make_item(
                "sm-1", status="in_progress", created_at=NOW - dt.timedelta(minutes=30)
            ),
            make_item("sm-3", status="open", created_at=BASE_TIME),
            make_item("sm-4", status="in_progress", issue_type="task", created_at=BASE_TIME),
        ]
    )


def test_collect_stale_claims_plans_only_old_in_progress_merge_requests() -> None:
    tracker = _stale_tracker()

    actions = collect_stale_claims(tracker, older_than=dt.timedelta(hours=2), now=NOW)

    assert [action.item_id for action in actions] == ["sm-2"]
    assert actions[0].description == "Reopen sm-2 (in progress for 3h00m)"
    assert tracker.mutations == []


def test_reclaim_reopens_with_note() -> None:
    tracker = _stale_tracker()

    reclaimed = reclaim_stale_claims(tracker, older_than=dt.timedelta(hours=2), now=NOW)

    assert reclaimed == ["sm-2"]
    assert tracker.mutations == [
        ("update", "sm-2", {"status": "open", "notes": RECLAIM_NOTE})
    ]
    assert tracker.items["sm-2"].status == "open"


def test_reclaim_dry_run_changes_nothing() -> None:
    tracker = _stale_tracker()

    reclaimed = reclaim_stale_claims(
        tracker, older_than=dt.timedelta(minutes=10), now=NOW, dry_run=True
    )

    assert reclaimed == ["sm-1", "sm-2"]
    assert tracker.mutations == []


def test_reclaim_skips_items_that_fail_to_update() -> None:
    tracker = _stale_tracker()
    tracker.failures["update:sm-1:open"] = "bd down"

    reclaimed = reclaim_stale_claims(tracker, older_than=dt.timedelta(minutes=10), now=NOW)

    assert reclaimed == ["sm-2"]
    assert tracker.items["sm-1"].status == "in_progress"
