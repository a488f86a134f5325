"""Implementation for the ``smelter escalate`` commands."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.table import Table

from ..errors import SmelterError
from ..io import say
from .resolve import build_escalator, build_tracker, fail, resolve_rig


def stale(args: object) -> None:
    """Re-escalate unacknowledged escalations past the stale threshold."""
    rig = resolve_rig(args)
    try:
        escalator = build_escalator(rig, build_tracker(rig))
        results = escalator.reescalate_stale()
    except SmelterError as exc:
        fail(exc)
    if not results:
        say("No stale escalations.")
        return
    table = Table(box=box.SIMPLE)
    table.add_column("Escalation", style="bold")
    table.add_column("Severity")
    table.add_column("#")
    table.add_column("Note")
    for result in results:
        if result.skipped:
            table.add_row(
                result.id, result.old_severity, str(result.reescalation_num), result.skip_reason
            )
        else:
            table.add_row(
                result.id,
                f"{result.old_severity} -> {result.new_severity}",
                str(result.reescalation_num),
                "reescalated",
            )
    Console().print(table)


def ack(args: object) -> None:
    rig = resolve_rig(args)
    escalation_id = str(getattr(args, "escalation_id"))
    try:
        build_escalator(rig, build_tracker(rig)).acknowledge(escalation_id)
    except SmelterError as exc:
        fail(exc)
    say(f"Acknowledged {escalation_id}")


def close(args: object) -> None:
    rig = resolve_rig(args)
    escalation_id = str(getattr(args, "escalation_id"))
    reason = str(getattr(args, "reason", None) or "resolved")
    try:
        build_escalator(rig, build_tracker(rig)).close(escalation_id, reason=reason)
    except SmelterError as exc:
        fail(exc)
    say(f"Closed {escalation_id}")
