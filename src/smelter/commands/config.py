"""Implementation for the ``smelter config show`` command."""

from __future__ import annotations

import json

from rich import box
from rich.console import Console
from rich.table import Table

from .. import config, paths
from ..errors import ConfigError
from ..io import die, say
from .resolve import fail, resolve_rig

_FORMATS = {"table", "json"}


def show(args: object) -> None:
    """Print the effective merge queue configuration for a rig."""
    format_value = str(getattr(args, "format", "table") or "table").lower()
    if format_value not in _FORMATS:
        die(f"unsupported format: {format_value}")
    rig = resolve_rig(args)
    source = paths.rig_config_path(rig)
    try:
        resolved = config.load_merge_queue_config(source)
    except ConfigError as exc:
        fail(exc)
    payload = config.describe_merge_queue_config(resolved)
    if format_value == "json":
        say(json.dumps(payload, indent=2))
        return
    table = Table(title=f"merge_queue ({source})", box=box.SIMPLE)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        table.add_row(key, json.dumps(value) if not isinstance(value, str) else value)
    Console().print(table)
