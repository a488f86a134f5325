"""Implementation for the ``smelter reclaim`` command."""

from __future__ import annotations

from ..durations import parse_duration
from ..engine.recovery import reclaim_stale_claims
from ..errors import SmelterError
from ..io import die, say
from .resolve import build_tracker, fail, resolve_rig

DEFAULT_OLDER_THAN = "2h"


def reclaim(args: object) -> None:
    """Reopen merge requests left in progress longer than ``--older-than``."""
    raw = str(getattr(args, "older_than", None) or DEFAULT_OLDER_THAN)
    try:
        older_than = parse_duration(raw)
    except ValueError as exc:
        die(f"--older-than: {exc}")
    dry_run = bool(getattr(args, "dry_run", False))
    rig = resolve_rig(args)
    try:
        reclaimed = reclaim_stale_claims(
            build_tracker(rig), older_than=older_than, dry_run=dry_run
        )
    except SmelterError as exc:
        fail(exc)
    if not reclaimed:
        say("No stale merge requests.")
        return
    verb = "Would reopen" if dry_run else "Reopened"
    say(f"{verb} {len(reclaimed)} merge request(s): {', '.join(reclaimed)}")
