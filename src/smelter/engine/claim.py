"""Claiming merge requests before processing."""

from __future__ import annotations

from .. import beads
from ..errors import ClaimError, TrackerError
from ..models import MergeRequest
from .ports import Tracker


def claim(tracker: Tracker, item: MergeRequest) -> None:
    """Mark ``item`` in progress so other consumers skip it.

    Raises:
        ClaimError: The status update failed; nothing else was changed.
    """
    try:
        tracker.update(item.id, status=beads.STATUS_IN_PROGRESS)
    except TrackerError as exc:
        raise ClaimError(item.id, str(exc)) from exc
