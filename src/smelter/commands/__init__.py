"""Command implementations for the ``smelter`` CLI."""
