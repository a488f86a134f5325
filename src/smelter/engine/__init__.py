"""Merge queue engine package."""

from .models import CycleOutcome, CycleStatus, ItemOutcome, ProcessResult
from .scheduler import CancellationToken, Engine, PipelineStages

__all__ = [
    "CancellationToken",
    "CycleOutcome",
    "CycleStatus",
    "Engine",
    "ItemOutcome",
    "PipelineStages",
    "ProcessResult",
]
