import re
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

from typer.testing import CliRunner

import smelter.cli as cli

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


def _strip_ansi(output: str) -> str:
    return ANSI_ESCAPE_RE.sub("", output)


def _capture(target: str) -> tuple[list[SimpleNamespace], object]:
    seen: list[SimpleNamespace] = []
    return seen, patch(target, lambda args: seen.append(args))


def test_global_log_level_flag_sets_runtime_level() -> None:
    runner = CliRunner()
    with (
        patch("smelter.cli.once_cmd", lambda _args: None),
        patch("smelter.cli.smelter_log.set_level") as mock_set_level,
    ):
        result = runner.invoke(cli.app, ["--log-level", "debug", "once"])

    assert result.exit_code == 0
    mock_set_level.assert_called_once_with("debug")


def test_global_log_level_rejects_unknown_values() -> None:
    runner = CliRunner()
    result = runner.invoke(cli.app, ["--log-level", "loud", "once"], color=False)
    clean_output = _strip_ansi(result.output)

    assert result.exit_code != 0
    assert "--log-level" in clean_output
    assert "expected one of" in clean_output.lower()


def test_no_color_flag_disables_colorized_output() -> None:
    runner = CliRunner()
    with (
        patch("smelter.cli.once_cmd", lambda _args: None),
        patch("smelter.cli.smelter_log.set_no_color") as mock_set_no_color,
    ):
        result = runner.invoke(cli.app, ["--no-color", "once"])

    assert result.exit_code == 0
    mock_set_no_color.assert_called_once_with(True)


def test_version_flag_prints_version() -> None:
    result = CliRunner().invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert result.output.startswith("smelter ")


def test_run_passes_rig_and_test_timeout(tmp_path: Path) -> None:
    seen, patcher = _capture("smelter.cli.run_cmd")
    with patcher:
        result = CliRunner().invoke(
            cli.app, ["--rig", str(tmp_path), "run", "--test-timeout", "90"]
        )

    assert result.exit_code == 0
    assert seen[0].rig == tmp_path
    assert seen[0].test_timeout == 90.0


def test_rig_defaults_from_environment(tmp_path: Path) -> None:
    seen, patcher = _capture("smelter.cli.once_cmd")
    with patcher:
        result = CliRunner().invoke(cli.app, ["once"], env={"SMELTER_RIG": str(tmp_path)})

    assert result.exit_code == 0
    assert seen[0].rig == tmp_path
    assert seen[0].test_timeout is None


def test_reclaim_options() -> None:
    seen, patcher = _capture("smelter.cli.reclaim_cmd")
    with patcher:
        result = CliRunner().invoke(cli.app, ["reclaim", "--older-than", "30m", "--dry-run"])

    assert result.exit_code == 0
    assert seen[0].older_than == "30m"
    assert seen[0].dry_run is True
    assert seen[0].rig is None


def test_reclaim_defaults() -> None:
    seen, patcher = _capture("smelter.cli.reclaim_cmd")
    with patcher:
        CliRunner().invoke(cli.app, ["reclaim"])

    assert seen[0].older_than == "2h"
    assert seen[0].dry_run is False


def test_config_show_format_option() -> None:
    seen, patcher = _capture("smelter.cli.config_show_cmd")
    with patcher:
        result = CliRunner().invoke(cli.app, ["config", "show", "--format", "json"])

    assert result.exit_code == 0
    assert seen[0].format == "json"


def test_escalate_subcommands_forward_arguments() -> None:
    stale_seen, stale_patch = _capture("smelter.cli.escalate_stale_cmd")
    ack_seen, ack_patch = _capture("smelter.cli.escalate_ack_cmd")
    close_seen, close_patch = _capture("smelter.cli.escalate_close_cmd")
    runner = CliRunner()
    with stale_patch, ack_patch, close_patch:
        assert runner.invoke(cli.app, ["escalate", "stale"]).exit_code == 0
        assert runner.invoke(cli.app, ["escalate", "ack", "sm-e1"]).exit_code == 0
        assert runner.invoke(cli.app, ["escalate", "close", "sm-e1"]).exit_code == 0
        assert (
            runner.invoke(
                cli.app, ["escalate", "close", "sm-e2", "--reason", "fixed"]
            ).exit_code
            == 0
        )

    assert len(stale_seen) == 1
    assert ack_seen[0].escalation_id == "sm-e1"
    assert [(args.escalation_id, args.reason) for args in close_seen] == [
        ("sm-e1", "resolved"),
        ("sm-e2", "fixed"),
    ]


def test_no_arguments_shows_help() -> None:
    result = CliRunner().invoke(cli.app, [])

    assert "Usage" in _strip_ansi(result.output)
