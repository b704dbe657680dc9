"""Merge per-worker counters into a single ImportReport."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..parallel.types import WorkerResult
from .result import ImportReport

__all__ = ["ResultAggregator", "lost_worker_warning"]

logger = logging.getLogger(__name__)


def lost_worker_warning(index: int, reason: str) -> str:
    return f"Worker {index} produced no result ({reason}); its rows are not counted"


class ResultAggregator:
    """Collect one WorkerResult per worker and sum them.

    A worker that crashed, was killed or sent an unreadable payload
    contributes zero to every counter and one warning to the report.
    """

    def __init__(self, workers: int):
        self.workers = workers
        self.results: Dict[int, WorkerResult] = {}
        self.lost: Dict[int, str] = {}

    def collect(self, index: int, result: Optional[WorkerResult], reason: str = "no result") -> None:
        if index in self.results or index in self.lost:
            return
        if result is None:
            logger.warning("Worker %d lost: %s", index, reason)
            self.lost[index] = reason
        else:
            logger.debug(
                "Worker %d: total=%d success=%d failed=%d skipped=%d",
                index,
                result.total,
                result.success,
                result.failed,
                result.skipped,
            )
            self.results[index] = result

    @property
    def pending(self) -> List[int]:
        return [i for i in range(self.workers) if i not in self.results and i not in self.lost]

    @property
    def complete(self) -> bool:
        return not self.pending

    def totals(self) -> WorkerResult:
        combined = WorkerResult()
        for result in self.results.values():
            combined = combined + result
        return combined

    def report(self, duration: float, warnings: Optional[List[str]] = None) -> ImportReport:
        totals = self.totals()
        report = ImportReport(
            total_rows=totals.total,
            success_rows=totals.success,
            failed_rows=totals.failed,
            skipped_rows=totals.skipped,
            duration=max(0.0, duration),
        )
        for index in sorted(self.lost):
            report.add_warning(lost_worker_warning(index, self.lost[index]))
        for message in warnings or []:
            report.add_warning(message)
        return report
