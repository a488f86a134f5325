from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

import smelter.commands.config as config_cmd
import smelter.commands.escalate as escalate_cmd
import smelter.commands.reclaim as reclaim_cmd
from smelter.escalation import EscalationConfig, Escalator
from tests.smelter.helpers import FakeTracker, make_item

LONG_AGO = dt.datetime(2020, 1, 1, tzinfo=dt.timezone.utc)


def test_config_show_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "config.json").write_text(
        json.dumps({"merge_queue": {"target_branch": "develop", "poll_interval": "1m"}}),
        encoding="utf-8",
    )

    config_cmd.show(SimpleNamespace(rig=tmp_path, format="json"))

    payload = json.loads(capsys.readouterr().out)
    assert payload["target_branch"] == "develop"
    assert payload["poll_interval"] == "1m0s"
    assert payload["enabled"] is True


def test_config_show_table(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_cmd.show(SimpleNamespace(rig=tmp_path, format="table"))

    out = capsys.readouterr().out
    assert "target_branch" in out
    assert "main" in out


def test_config_show_rejects_unknown_format(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        config_cmd.show(SimpleNamespace(rig=tmp_path, format="yaml"))


def test_config_show_reports_invalid_config(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "config.json").write_text("{", encoding="utf-8")

    with pytest.raises(SystemExit):
        config_cmd.show(SimpleNamespace(rig=tmp_path, format="json"))

    assert "parsing config" in capsys.readouterr().err


def test_missing_rig_directory_is_an_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    with pytest.raises(SystemExit):
        config_cmd.show(SimpleNamespace(rig=tmp_path / "missing", format="json"))

    assert "rig directory not found" in capsys.readouterr().err


def _reclaim(tmp_path: Path, tracker: FakeTracker, **options: object) -> None:
    args = SimpleNamespace(rig=tmp_path, older_than="2h", dry_run=False)
    for key, value in options.items():
        setattr(args, key, value)
    with patch("smelter.commands.reclaim.build_tracker", lambda _rig: tracker):
        reclaim_cmd.reclaim(args)


def test_reclaim_reopens_stale_items(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tracker = FakeTracker([make_item("sm-1", status="in_progress", created_at=LONG_AGO)])

    _reclaim(tmp_path, tracker)

    assert "Reopened 1 merge request(s): sm-1" in capsys.readouterr().out
    assert tracker.items["sm-1"].status == "open"


def test_reclaim_dry_run(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tracker = FakeTracker([make_item("sm-1", status="in_progress", created_at=LONG_AGO)])

    _reclaim(tmp_path, tracker, dry_run=True)

    assert "Would reopen 1 merge request(s): sm-1" in capsys.readouterr().out
    assert tracker.mutations == []


def test_reclaim_with_nothing_stale(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _reclaim(tmp_path, FakeTracker([make_item("sm-1")]))

    assert "No stale merge requests." in capsys.readouterr().out


def test_reclaim_rejects_bad_duration(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit):
        _reclaim(tmp_path, FakeTracker(), older_than="soon")

    assert "--older-than" in capsys.readouterr().err


def test_reclaim_reports_tracker_errors(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    tracker = FakeTracker()
    tracker.failures["list"] = "bd down"

    with pytest.raises(SystemExit):
        _reclaim(tmp_path, tracker)

    assert "bd down" in capsys.readouterr().err


def _patched_escalator(tracker: FakeTracker, config: EscalationConfig | None = None):
    escalator = Escalator(tracker, config or EscalationConfig(), sender="mayor")
    return patch("smelter.commands.escalate.build_escalator", lambda _rig, _tracker: escalator)


def _with_tracker(tracker: FakeTracker):
    return patch("smelter.commands.escalate.build_tracker", lambda _rig: tracker)


def test_escalate_stale_lists_reescalations(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    tracker = FakeTracker()
    Escalator(tracker, EscalationConfig(), sender="engine").escalate(
        title="Stuck", severity="low", now=LONG_AGO
    )

    with _with_tracker(tracker), _patched_escalator(tracker):
        escalate_cmd.stale(SimpleNamespace(rig=tmp_path))

    out = capsys.readouterr().out
    assert "sm-e1" in out
    assert "low -> medium" in out


def test_escalate_stale_with_nothing_to_do(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    tracker = FakeTracker()

    with _with_tracker(tracker), _patched_escalator(tracker):
        escalate_cmd.stale(SimpleNamespace(rig=tmp_path))

    assert "No stale escalations." in capsys.readouterr().out


def test_escalate_ack_and_close(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tracker = FakeTracker()
    escalation_id = Escalator(tracker, EscalationConfig(), sender="engine").escalate(
        title="Stuck", severity="low"
    )

    with _with_tracker(tracker), _patched_escalator(tracker):
        escalate_cmd.ack(SimpleNamespace(rig=tmp_path, escalation_id=escalation_id))
        escalate_cmd.close(
            SimpleNamespace(rig=tmp_path, escalation_id=escalation_id, reason=None)
        )

    out = capsys.readouterr().out
    assert f"Acknowledged {escalation_id}" in out
    assert f"Closed {escalation_id}" in out
    assert ("close", "resolved", (escalation_id,)) in tracker.calls


def test_escalate_ack_unknown_id_fails(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    tracker = FakeTracker()

    with _with_tracker(tracker), _patched_escalator(tracker), pytest.raises(SystemExit):
        escalate_cmd.ack(SimpleNamespace(rig=tmp_path, escalation_id="sm-missing"))

    assert "escalation not found: sm-missing" in capsys.readouterr().err


def test_default_escalator_writes_rig_settings(tmp_path: Path) -> None:
    tracker = FakeTracker()

    with _with_tracker(tracker):
        escalate_cmd.stale(SimpleNamespace(rig=tmp_path))

    assert (tmp_path / "settings" / "escalation.json").exists()
