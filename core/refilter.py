# core/refilter.py
import logging
from typing import Optional

from .categories import copy_assignments
from .models import AssignmentMap

logger = logging.getLogger(__name__)


class RefilterController:
    """Freezes the assignment data the view is computed from.

    While suppressed, the category filter and the lastCategorized sort key read
    the snapshot taken at ``begin()``; the live map keeps changing underneath so
    persisted state stays correct. The image open in the viewer therefore never
    drops out of, or moves within, the view until the viewer navigates or closes.
    """

    def __init__(self):
        self._suppressed = False
        self._snapshot: Optional[AssignmentMap] = None

    @property
    def suppressed(self) -> bool:
        return self._suppressed

    def begin(self, live: AssignmentMap) -> None:
        """Start suppressing. A second call while active keeps the first snapshot."""
        if self._suppressed:
            return
        self._snapshot = copy_assignments(live)
        self._suppressed = True
        logger.debug(f"Refilter suppressed, snapshot of {len(self._snapshot)} assigned image(s)")

    def clear(self) -> bool:
        """Stop suppressing. Returns whether suppression had been active."""
        was_active = self._suppressed
        self._suppressed = False
        self._snapshot = None
        if was_active:
            logger.debug("Refilter released")
        return was_active

    def source(self, live: AssignmentMap) -> AssignmentMap:
        """The map the view should be computed from right now."""
        if self._suppressed and self._snapshot is not None:
            return self._snapshot
        return live
