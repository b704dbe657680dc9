"""Worker body and process entry points for the parallel import path.

Each worker opens its own row source and its own sink connection,
keeps only the rows it owns under round-robin partitioning, and runs
them through the same stages as the sequential pipeline: map, validate,
then write in batches, one chunk at a time. It reports one
``WorkerResult`` on its private channel.

Run as ``python -m sheetflow.parallel TASK_FILE`` for the process driver;
the fork driver calls ``fork_entry`` in a forked child.
"""

from __future__ import annotations

import logging
import os
import pickle
import signal
import sys
from typing import Any, Dict, List, Optional, Tuple

from setproctitle import setproctitle

from ..errors import ValidationError
from ..io.readers import RowSource, open_row_source
from ..mapping import MapperRef
from ..pipeline.batch import BatchBuffer, chunked
from ..utilities.memory import GcTicker
from .channel import encode_result
from .types import WorkerResult, WorkerTask

__all__ = ["run_worker", "fork_entry", "main"]

logger = logging.getLogger(__name__)


class _WorkerRun:
    """Counters and chunk stages for one worker."""

    def __init__(self, task: WorkerTask, source: RowSource, buffer: BatchBuffer):
        self.task = task
        self.mapper = task.mapper.resolve() if isinstance(task.mapper, MapperRef) else task.mapper
        self.source = source
        self.buffer = buffer
        self.total = 0
        self.skipped = 0
        self.mapper_failed = 0
        self.stopped = False
        self.invalid: Optional[ValidationError] = None

    @property
    def failed(self) -> int:
        return self.buffer.failed + self.mapper_failed

    def _limit_reached(self) -> bool:
        limit = self.task.max_errors
        if limit is None or self.failed < limit:
            return False
        logger.debug("%s: %d failed rows reached the limit of %d", self.task.name, self.failed, limit)
        return True

    def process(self, chunk: List[Tuple[int, Dict[Any, Any]]]) -> None:
        """Map and validate a whole chunk, then write it in batches.

        Raises:
            ValidationError: On the first invalid row when invalid rows
                are not skipped; nothing from the chunk is written
        """
        self.total += len(chunk)
        validator = self.task.validator
        ready: List[Dict[Any, Any]] = []
        for ordinal, record in chunk:
            if self.mapper is not None:
                try:
                    record = self.mapper(record)
                except Exception as exc:
                    self.mapper_failed += 1
                    logger.debug("%s: mapper failed: %s", self.task.name, exc)
                    if self._limit_reached():
                        self.stopped = True
                        break
                    continue
                if record is None:
                    continue
            if validator is not None:
                errors = validator.validate(record)
                if errors:
                    if not self.task.skip_invalid_rows:
                        raise ValidationError(self.source.row_number(ordinal), errors)
                    self.skipped += 1
                    continue
            ready.append(record)

        for batch in chunked(ready, self.task.batch_size):
            self.buffer.extend(batch)
            _, failed = self.buffer.flush()
            if failed and not self.stopped and self._limit_reached():
                self.stopped = True
                break

    def result(self) -> WorkerResult:
        invalid = self.invalid
        return WorkerResult(
            total=self.total,
            success=self.buffer.success,
            failed=self.failed,
            skipped=self.skipped,
            stopped=self.stopped,
            invalid_row=invalid.row_number if invalid else None,
            invalid_errors=tuple(invalid.errors) if invalid else (),
        )


def run_worker(task: WorkerTask) -> WorkerResult:
    """Import the rows ``task.assignment`` owns and return the counters.

    Mapper exceptions count the row as failed. A mapper returning None
    skips the row, which then counts toward ``total`` only. Invalid rows
    count as ``skipped`` with ``skip_invalid_rows``; otherwise the first
    one ends the worker and is reported in ``invalid_row``. A batch the
    sink rejects counts entirely as failed.
    """
    gc_ticker = GcTicker(task.gc_interval)
    sink = task.sink.connect()
    try:
        with open_row_source(
            task.path,
            dialect=task.dialect,
            header_row=task.header_row,
            headers=task.headers,
            sheet=task.sheet,
        ) as source:
            run = _WorkerRun(task, source, BatchBuffer(sink, task.batch_size, task.upsert))
            try:
                for chunk in chunked(source.rows(task.assignment.owns), task.chunk_size):
                    if task.use_transactions:
                        with sink.transaction():
                            run.process(chunk)
                    else:
                        run.process(chunk)
                    gc_ticker.tick(len(chunk))
                    if run.stopped:
                        break
            except ValidationError as exc:
                logger.debug("%s: %s", task.name, exc)
                run.invalid = exc
    finally:
        sink.close()

    return run.result()


def _silence_output() -> None:
    """Point fds 1 and 2 at /dev/null so stray output cannot reach the channel."""
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        sys.stdout.flush()
        sys.stderr.flush()
    except (AttributeError, ValueError):
        pass
    os.dup2(devnull, 1)
    os.dup2(devnull, 2)
    os.close(devnull)


def _worker_signals() -> None:
    # The coordinator owns Ctrl-C handling and terminates workers itself
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, signal.SIG_DFL)


def fork_entry(task: WorkerTask, conn) -> None:
    """Target for a fork-context Process; writes the result to ``conn``."""
    _worker_signals()
    _silence_output()
    setproctitle(task.name)
    try:
        result = run_worker(task)
        conn.send_bytes(encode_result(result))
    finally:
        conn.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Process-driver entry: load a pickled task, write MARKER+JSON to stdout."""
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        return 2

    channel_fd = os.dup(1)
    _worker_signals()
    _silence_output()

    with open(args[0], "rb") as fh:
        task: WorkerTask = pickle.load(fh)
    setproctitle(task.name)

    result = run_worker(task)
    with os.fdopen(channel_fd, "wb") as channel:
        channel.write(encode_result(result))
        channel.flush()
    return 0

