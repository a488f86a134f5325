"""Shared resolution helpers for CLI commands."""

from __future__ import annotations

import os
from pathlib import Path
from typing import NoReturn

from ..beads import BeadsTracker
from ..errors import SmelterError
from ..escalation import Escalator, detect_sender_fallback, load_rig_escalation_config
from ..io import die

RIG_ENV = "SMELTER_RIG"
BEADS_DIR_ENV = "SMELTER_BEADS_DIR"
DEFAULT_ACTOR = "smelter/refinery"


def resolve_rig(args: object) -> Path:
    """Return the rig directory from ``--rig``, ``SMELTER_RIG`` or the cwd."""
    value = getattr(args, "rig", None) or os.environ.get(RIG_ENV)
    rig = Path(value).expanduser() if value else Path.cwd()
    rig = rig.resolve()
    if not rig.is_dir():
        die(f"rig directory not found: {rig}")
    return rig


def actor() -> str:
    return detect_sender_fallback() or DEFAULT_ACTOR


def build_tracker(rig: Path) -> BeadsTracker:
    beads_dir = os.environ.get(BEADS_DIR_ENV)
    return BeadsTracker(
        cwd=rig,
        beads_root=Path(beads_dir).expanduser() if beads_dir else None,
        actor=actor(),
    )


def build_escalator(rig: Path, tracker: BeadsTracker) -> Escalator:
    return Escalator(tracker, load_rig_escalation_config(rig), sender=actor())


def fail(exc: SmelterError) -> NoReturn:
    """Exit non-zero with the error and its recovery hint, if any."""
    message = str(exc)
    if exc.recovery_hint:
        message = f"{message}\nhint: {exc.recovery_hint}"
    die(message)
