"""Periodic garbage collection for long imports."""

from __future__ import annotations

import gc
import logging

__all__ = ["GcTicker"]

logger = logging.getLogger(__name__)


class GcTicker:
    """Call ``gc.collect()`` each time another ``interval`` rows are processed.

    One instance per run; nothing is kept at module level.
    """

    def __init__(self, interval: int = 100_000):
        self.interval = interval
        self.processed = 0
        self.collections = 0

    def tick(self, rows: int = 1) -> bool:
        """Account for ``rows`` processed rows; True if a collection ran."""
        if self.interval <= 0 or rows <= 0:
            return False
        before = self.processed // self.interval
        self.processed += rows
        if self.processed // self.interval > before:
            freed = gc.collect()
            self.collections += 1
            logger.debug("gc.collect() after %d rows freed %d objects", self.processed, freed)
            return True
        return False
