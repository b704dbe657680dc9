"""Parallel import coordinator.

Splits one input file across W shared-nothing workers by round-robin
ordinal, supervises them with a short sleep-poll loop, samples progress
from the sink's row count, and merges the per-worker counters.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..config import DRIVER_PROCESS, DRIVER_SYNC, ImportConfig, ParallelConfig
from ..errors import PersistenceError, ValidationError
from ..io.readers import open_row_source
from ..mapping import ensure_portable
from ..pipeline.aggregate import ResultAggregator
from ..pipeline.progress import ProgressThrottle
from ..pipeline.result import ImportReport
from ..pipeline.sequential import SequentialPipeline, build_validator, max_errors_warning
from .drivers import POLL_INTERVALS, WorkerHandle, make_handle, select_driver
from .types import WorkerAssignment, WorkerTask

__all__ = ["ParallelCoordinator", "CANCELLED_WARNING"]

logger = logging.getLogger(__name__)

CANCELLED_WARNING = "Import cancelled: workers terminated before completion"


class ParallelCoordinator:
    """Run one import across worker processes.

    Args:
        config: Import configuration; ``config.parallel`` selects the worker
            count and driver (defaults apply when it is None)
        handle_factory: Builds a handle for ``(driver, task)``; tests swap
            this to inject misbehaving workers
    """

    def __init__(
        self,
        config: ImportConfig,
        *,
        handle_factory: Callable[[str, WorkerTask], WorkerHandle] = make_handle,
    ):
        self.config = config
        self.parallel = config.parallel or ParallelConfig()
        self.handle_factory = handle_factory
        self._cancel = threading.Event()
        self._handles: List[WorkerHandle] = []
        self._baseline = 0

    # -- public API --------------------------------------------------------

    def cancel(self) -> None:
        """Ask a running ``run()`` to terminate its workers and return."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, path: Union[str, Path]) -> ImportReport:
        """Import ``path`` across the configured workers.

        Workers apply the mapper, validation rules and ``max_errors``
        themselves. ``max_errors`` bounds each worker's own failures, so
        the merged count can exceed it; the report warns whenever any
        worker stopped or the merged count reached the limit.

        Raises:
            ValidationError: A worker met an invalid row and
                ``skip_invalid_rows`` is off; the other workers are
                terminated first and the lowest invalid row is reported
        """
        driver = select_driver(self.parallel.driver)
        if driver == DRIVER_SYNC:
            logger.info("No process isolation available; importing %s sequentially", path)
            return SequentialPipeline(self.config).run(path)
        validator = build_validator(self.config)
        if driver == DRIVER_PROCESS:
            ensure_portable(self.config.mapper)
            ensure_portable(validator, "validator")

        workers = self.parallel.clamped_workers
        headers = self._plan(path)
        poll = self.parallel.poll_interval or POLL_INTERVALS[driver]
        logger.info("Parallel import of %s: %d workers, driver=%s", path, workers, driver)

        self._cancel.clear()
        previous = self._install_signal_handlers()
        aggregator = ResultAggregator(workers)
        sampler = throttle = None
        started = time.perf_counter()
        try:
            sampler, throttle = self._setup_progress(path)
            started = time.perf_counter()
            self._launch(path, headers, workers, driver, validator)
            self._supervise(aggregator, throttle, sampler, poll)
        finally:
            self._shutdown(aggregator)
            duration = time.perf_counter() - started
            self._restore_signal_handlers(previous)
            if sampler is not None:
                sampler.close()

        totals = aggregator.totals()
        if totals.invalid_row is not None:
            raise ValidationError(totals.invalid_row, totals.invalid_errors)

        warnings = [CANCELLED_WARNING] if self.cancelled else []
        limit = self.config.max_errors
        if limit is not None and (totals.stopped or totals.failed >= limit):
            logger.warning("Parallel import stopped early: %d failed rows, limit %d per worker", totals.failed, limit)
            warnings.append(max_errors_warning(limit))
        report = aggregator.report(duration, warnings)
        if throttle is not None and not self.cancelled:
            throttle.finish(throttle.total if throttle.total > 0 else report.total_rows)

        logger.info(
            "Parallel import of %s finished: %d read, %d imported, %d failed, %d skipped in %.3fs (%d lost workers)",
            path,
            report.total_rows,
            report.success_rows,
            report.failed_rows,
            report.skipped_rows,
            report.duration,
            len(aggregator.lost),
        )
        return report

    # -- lifecycle stages --------------------------------------------------

    def _plan(self, path) -> Optional[list]:
        """Read the header once; workers reuse it instead of re-deriving it."""
        cfg = self.config
        with open_row_source(path, dialect=cfg.dialect, header_row=cfg.header_row, sheet=cfg.sheet) as source:
            return source.headers()

    def _setup_progress(self, path):
        """Count rows and snapshot the sink baseline when progress is wanted.

        Returns:
            (sampler, throttle): an open sink used for ``count()`` and the
            throttle, or (None, None)
        """
        cfg = self.config
        if cfg.progress is None:
            return None, None

        with open_row_source(path, dialect=cfg.dialect, header_row=cfg.header_row, sheet=cfg.sheet) as source:
            total = source.count()

        sampler = cfg.sink.connect()
        try:
            baseline = sampler.count()
        except PersistenceError as exc:
            logger.warning("Progress sampling disabled: %s", exc)
            sampler.close()
            sampler = None
            baseline = 0

        throttle = ProgressThrottle(cfg.progress, total)
        throttle.start()
        if sampler is not None:
            self._baseline = baseline
        return sampler, throttle

    def _launch(self, path, headers, workers: int, driver: str, validator=None) -> None:
        cfg = self.config
        for index in range(workers):
            task = WorkerTask(
                assignment=WorkerAssignment(index, workers, str(path)),
                sink=cfg.sink,
                headers=headers,
                header_row=cfg.header_row,
                dialect=cfg.dialect,
                sheet=cfg.sheet,
                batch_size=cfg.batch_size,
                upsert=cfg.upsert,
                mapper=cfg.mapper,
                validator=validator,
                skip_invalid_rows=cfg.skip_invalid_rows,
                max_errors=cfg.max_errors,
                chunk_size=cfg.chunk_size,
                use_transactions=cfg.use_transactions,
                gc_interval=cfg.gc_interval,
            )
            handle = self.handle_factory(driver, task)
            self._handles.append(handle)
            handle.start()
            logger.debug("Started %s", task.name)

    def _supervise(self, aggregator: ResultAggregator, throttle, sampler, poll: float) -> None:
        running = list(self._handles)
        while running:
            if self._cancel.is_set():
                logger.warning("Cancellation requested; terminating %d running workers", len(running))
                return

            still_running = []
            for handle in running:
                if handle.done():
                    result, reason = handle.outcome()
                    aggregator.collect(handle.index, result, reason)
                    handle.close()
                    if result is not None and result.invalid_row is not None:
                        logger.warning(
                            "Worker %d stopped on invalid row %d; terminating the others",
                            handle.index,
                            result.invalid_row,
                        )
                        return
                else:
                    still_running.append(handle)
            running = still_running

            if running and throttle is not None and sampler is not None:
                throttle.maybe_report(self._sample(sampler))
            if running:
                time.sleep(poll)

    def _sample(self, sampler) -> Callable[[], int]:
        def rows_added() -> int:
            try:
                return sampler.count() - self._baseline
            except PersistenceError as exc:
                logger.debug("Progress sample failed: %s", exc)
                return 0

        return rows_added

    def _shutdown(self, aggregator: ResultAggregator) -> None:
        """Terminate live workers (SIGTERM, grace period, SIGKILL) and release channels.

        Workers still uncollected here are recorded through the aggregator,
        so a killed worker shows up as a lost-worker warning.
        """
        live = [h for h in self._handles if h.exitcode is None]
        if live:
            for handle in live:
                handle.terminate()
            deadline = time.monotonic() + self.parallel.grace_period
            while time.monotonic() < deadline and not all(h.done() for h in live):
                time.sleep(0.005)
            for handle in live:
                handle.kill()
        for handle in self._handles:
            if handle.index in aggregator.pending:
                handle.done()
                result, reason = handle.outcome()
                aggregator.collect(handle.index, result, "cancelled" if self.cancelled and result is None else reason)
            handle.close()
        self._handles = []
        for index in aggregator.pending:
            aggregator.collect(index, None, "never started")

    # -- signals -----------------------------------------------------------

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return None

        def _handler(signum, frame):
            logger.warning("Received signal %d; cancelling import", signum)
            self._cancel.set()

        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.getsignal(signum)
            signal.signal(signum, _handler)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous) -> None:
        if not previous:
            return
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
