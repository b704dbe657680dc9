"""Batch buffering for sink writes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, TypeVar

from ..config import UpsertConfig
from ..db.sink import BatchSink, write_batch
from ..errors import PersistenceError

__all__ = ["BatchBuffer", "chunked"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Group an iterable into lists of at most ``size`` items."""
    chunk: List[T] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


class BatchBuffer:
    """Accumulate mapped records and write them to a sink in fixed-size batches.

    Counts are kept per buffer: ``success`` is what the sink reports as
    written, ``failed`` is attempted minus written. A batch the sink
    rejects with PersistenceError counts entirely as failed.
    """

    def __init__(self, sink: BatchSink, batch_size: int, upsert: Optional[UpsertConfig] = None):
        self.sink = sink
        self.batch_size = batch_size
        self.upsert = upsert
        self.items: List[Dict[Any, Any]] = []
        self.success = 0
        self.failed = 0
        self.batches = 0
        self.last_error: Optional[str] = None

    def __len__(self) -> int:
        return len(self.items)

    def add(self, record: Dict[Any, Any]) -> Tuple[int, int]:
        """Buffer a record, flushing when the batch is full.

        Returns:
            (success, failed) of the flush triggered, or (0, 0)
        """
        self.items.append(record)
        if len(self.items) >= self.batch_size:
            return self.flush()
        return 0, 0

    def extend(self, records: Iterable[Dict[Any, Any]]) -> None:
        """Buffer records without triggering a flush."""
        self.items.extend(records)

    def flush(self) -> Tuple[int, int]:
        """Write buffered records; returns (success, failed) for this batch."""
        if not self.items:
            return 0, 0
        attempted = len(self.items)
        self.batches += 1
        self.last_error = None
        try:
            written = write_batch(self.sink, self.items, self.upsert)
        except PersistenceError as exc:
            logger.warning("Batch of %d rows failed: %s", attempted, exc)
            self.last_error = str(exc)
            written = 0
        finally:
            self._clear()
        written = max(0, min(int(written), attempted))
        self.success += written
        self.failed += attempted - written
        return written, attempted - written

    def _clear(self) -> None:
        self.items = []
