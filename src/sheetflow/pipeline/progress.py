"""Progress state, throttling and display for import runs."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from tqdm import tqdm

__all__ = [
    "ProgressState",
    "ProgressThrottle",
    "ProgressFormatter",
    "TqdmProgress",
    "percent_of",
    "SAMPLE_INTERVAL_S",
    "MIN_PERCENT_DELTA",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, float], None]

SAMPLE_INTERVAL_S = 0.5  # Minimum time between sink samples
MIN_PERCENT_DELTA = 1.0  # Emit only when percent exceeds last + delta


def percent_of(current: int, total: int) -> float:
    """Percentage rounded to 2 places; 0 when the total is unknown."""
    if total <= 0:
        return 0.0
    return round(min(current, total) / total * 100.0, 2)


@dataclass
class ProgressState:
    """Per-run throttle state. Never shared across runs."""

    total_rows_hint: int = 0
    last_sample_time: float = float("-inf")
    last_reported_percent: float = 0.0
    finished: bool = False


class ProgressThrottle:
    """Rate-limit progress callbacks on the parallel path.

    A sample is taken only when ``interval`` seconds have passed since the
    previous one, and reported only when the percentage moved more than
    ``min_delta`` points past the last report. ``finish()`` reports
    ``(total, total, 100.0)`` exactly once and bypasses both gates; sampled
    values at or above the total are held back for it.

    Args:
        callback: Progress sink ``(current, total, percentage)``
        total: Expected row count (0 = unknown)
        interval: Minimum seconds between samples
        min_delta: Minimum percentage-point advance between reports
        clock: Monotonic time source
    """

    def __init__(
        self,
        callback: ProgressCallback,
        total: int,
        *,
        interval: float = SAMPLE_INTERVAL_S,
        min_delta: float = MIN_PERCENT_DELTA,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.callback = callback
        self.interval = interval
        self.min_delta = min_delta
        self.clock = clock
        self.state = ProgressState(total_rows_hint=max(0, int(total)))

    @property
    def total(self) -> int:
        return self.state.total_rows_hint

    def should_sample(self, now: float) -> bool:
        return now - self.state.last_sample_time >= self.interval

    def should_emit(self, percent: float) -> bool:
        return percent > self.state.last_reported_percent + self.min_delta

    def start(self) -> None:
        """Report ``(0, total, 0.0)`` and open the first sampling window."""
        self.state.last_sample_time = self.clock()
        self._emit(0, self.total, 0.0)

    def maybe_report(self, sample: Callable[[], int], now: Optional[float] = None) -> bool:
        """Take a sample if the time gate allows, then report if it moved enough.

        ``sample`` is only called once the time gate passes, so expensive
        counts (a sink-side ``COUNT(*)``) run at most once per interval.

        Returns:
            True if the callback was invoked
        """
        if self.state.finished or self.total <= 0:
            return False
        now = self.clock() if now is None else now
        if not self.should_sample(now):
            return False
        self.state.last_sample_time = now

        current = min(max(0, int(sample())), self.total)
        if current >= self.total:
            return False
        percent = percent_of(current, self.total)
        if not self.should_emit(percent):
            return False
        self.state.last_reported_percent = percent
        self._emit(current, self.total, percent)
        return True

    def finish(self, total: Optional[int] = None) -> bool:
        """Report completion exactly once.

        Args:
            total: Final row count when the hint was unknown or off
        """
        if self.state.finished:
            return False
        self.state.finished = True
        final = self.total if total is None else max(0, int(total))
        self.state.last_reported_percent = 100.0
        self._emit(final, final, 100.0)
        return True

    def _emit(self, current: int, total: int, percent: float) -> None:
        try:
            self.callback(current, total, percent)
        except Exception:
            logger.exception("Progress callback failed at %d/%d", current, total)


class ProgressFormatter:
    """Formats progress statistics for display."""

    @staticmethod
    def format_rate(rows_per_second: float) -> str:
        """Format a rate, e.g. '1.2k rows/s' or '850 rows/s'."""
        if rows_per_second >= 1000:
            return f"{rows_per_second / 1000:.1f}k rows/s"
        return f"{rows_per_second:.0f} rows/s"

    @staticmethod
    def format_elapsed_time(seconds: float) -> str:
        if seconds >= 3600:
            hours = int(seconds // 3600)
            minutes = int((seconds % 3600) // 60)
            return f"{hours}h{minutes:02d}m"
        if seconds >= 60:
            minutes = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{minutes}m{secs:02d}s"
        if seconds >= 10:
            return f"{seconds:.0f}s"
        return f"{seconds:.2f}s"


class TqdmProgress:
    """Progress callback that drives a tqdm bar.

    Use as a context manager and pass the instance as ``progress``::

        with TqdmProgress(desc="users.csv") as bar:
            import_file("users.csv", replace(config, progress=bar))
    """

    def __init__(self, desc: str = "Importing", unit: str = "rows", **tqdm_kwargs):
        self.desc = desc
        self.unit = unit
        self.tqdm_kwargs = tqdm_kwargs
        self._bar = None
        self._position = 0

    def __enter__(self) -> "TqdmProgress":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __call__(self, current: int, total: int, percentage: float) -> None:
        if self._bar is None:
            self._bar = tqdm(total=total or None, desc=self.desc, unit=self.unit, **self.tqdm_kwargs)
        elif total and self._bar.total != total:
            self._bar.total = total
            self._bar.refresh()
        delta = current - self._position
        if delta > 0:
            self._bar.update(delta)
            self._position = current

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
