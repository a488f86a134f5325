# ruff: noqa: E402

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import smelter.log as smelter_log


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "BD_ACTOR",
        "SMELTER_ROLE",
        "SMELTER_RIG",
        "SMELTER_BEADS_DIR",
        "SMELTER_LOG_LEVEL",
        "FORCE_COLOR",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(smelter_log, "_configured_level", None)
    monkeypatch.setattr(smelter_log, "_no_color_override", None)
    monkeypatch.setattr(smelter_log, "_timestamps", False)
