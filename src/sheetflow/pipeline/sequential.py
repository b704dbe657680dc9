"""Single-process import: read, map, validate, batch, persist."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..config import ImportConfig
from ..db.sink import BatchSink
from ..errors import ValidationError
from ..io.readers import RowSource, open_row_source
from ..utilities.memory import GcTicker
from ..validation import Validator
from . import events
from .batch import BatchBuffer, chunked
from .progress import percent_of
from .result import ImportReport

__all__ = ["SequentialPipeline", "build_validator", "max_errors_warning"]

logger = logging.getLogger(__name__)

Record = Dict[Any, Any]


def build_validator(config: ImportConfig) -> Optional[Validator]:
    """Validator for the configured rules, or None when nothing is configured."""
    if not config.rules and config.validator is None:
        return None
    return Validator(config.rules or {}, config.messages, config.validator)


def max_errors_warning(limit: int) -> str:
    return f"Import stopped: Maximum errors ({limit}) reached"


class SequentialPipeline:
    """Drive RowSource -> mapper -> validator -> BatchSink in-process.

    Rows are read ``chunk_size`` at a time; every chunk is mapped, then
    validated, then written in ``batch_size`` batches. With
    ``use_transactions`` each chunk runs inside one sink transaction.

    Args:
        config: Import configuration
        sink: Already-open sink to use; when omitted the pipeline connects
            through ``config.sink`` and closes the connection on exit
    """

    def __init__(self, config: ImportConfig, sink: Optional[BatchSink] = None):
        self.config = config
        self._sink = sink

    def run(self, path: Union[str, Path]) -> ImportReport:
        cfg = self.config
        report = ImportReport()
        started = time.perf_counter()
        validator = build_validator(cfg)
        gc_ticker = GcTicker(cfg.gc_interval)

        with open_row_source(
            path,
            dialect=cfg.dialect,
            header_row=cfg.header_row,
            sheet=cfg.sheet,
        ) as source:
            total_hint = source.count() if cfg.progress is not None else 0
            logger.info("Sequential import of %s (chunk=%d, batch=%d)", path, cfg.chunk_size, cfg.batch_size)

            sink = self._sink if self._sink is not None else cfg.sink.connect()
            try:
                buffer = BatchBuffer(sink, cfg.batch_size, cfg.upsert)
                for index, chunk in enumerate(chunked(source.rows(), cfg.chunk_size)):
                    events.fire(cfg.events, events.BEFORE_CHUNK, index, len(chunk))
                    if cfg.use_transactions:
                        with sink.transaction():
                            stopped = self._process_chunk(chunk, source, buffer, report, validator)
                    else:
                        stopped = self._process_chunk(chunk, source, buffer, report, validator)
                    events.fire(cfg.events, events.AFTER_CHUNK, index, len(chunk))

                    self._report_progress(report.total_rows, total_hint)
                    gc_ticker.tick(len(chunk))
                    if stopped:
                        break
            finally:
                if self._sink is None:
                    sink.close()

        report.duration = time.perf_counter() - started
        logger.info(
            "Import of %s finished: %d read, %d imported, %d failed, %d skipped in %.3fs",
            path,
            report.total_rows,
            report.success_rows,
            report.failed_rows,
            report.skipped_rows,
            report.duration,
        )
        return report

    # -- chunk stages ------------------------------------------------------

    def _process_chunk(
        self,
        chunk: List[Tuple[int, Record]],
        source: RowSource,
        buffer: BatchBuffer,
        report: ImportReport,
        validator: Optional[Validator],
    ) -> bool:
        """Map, validate and persist one chunk. Returns True to stop the run."""
        report.total_rows += len(chunk)

        mapped, stopped = self._map_chunk(chunk, source, report)
        if validator is not None:
            mapped = self._validate_chunk(mapped, source, report, validator)

        for batch in chunked(mapped, self.config.batch_size):
            buffer.extend(record for _, record in batch)
            written, failed = buffer.flush()
            report.success_rows += written
            report.failed_rows += failed
            if failed and buffer.last_error:
                report.add_warning(f"Batch of {len(batch)} rows failed: {buffer.last_error}")
            if not stopped and failed and self._limit_reached(report):
                stopped = True
                break
        return stopped

    def _map_chunk(
        self,
        chunk: List[Tuple[int, Record]],
        source: RowSource,
        report: ImportReport,
    ) -> Tuple[List[Tuple[int, Record]], bool]:
        mapper = self.config.mapper
        if mapper is None:
            return list(chunk), False

        mapped: List[Tuple[int, Record]] = []
        for ordinal, record in chunk:
            try:
                out = mapper(record)
            except Exception as exc:
                row_number = source.row_number(ordinal)
                report.failed_rows += 1
                report.add_error(row_number, str(exc) or type(exc).__name__, record)
                events.fire(self.config.events, events.ON_ERROR, row_number, exc)
                if self._limit_reached(report):
                    return mapped, True
                continue
            if out is not None:
                mapped.append((ordinal, out))
        return mapped, False

    def _validate_chunk(
        self,
        mapped: List[Tuple[int, Record]],
        source: RowSource,
        report: ImportReport,
        validator: Validator,
    ) -> List[Tuple[int, Record]]:
        valid: List[Tuple[int, Record]] = []
        for ordinal, record in mapped:
            errors = validator.validate(record)
            if not errors:
                valid.append((ordinal, record))
                continue
            row_number = source.row_number(ordinal)
            if not self.config.skip_invalid_rows:
                raise ValidationError(row_number, errors)
            report.skipped_rows += 1
            report.add_error(row_number, "; ".join(errors), record)
            events.fire(self.config.events, events.ON_ERROR, row_number, ValidationError(row_number, errors))
        return valid

    # -- helpers -----------------------------------------------------------

    def _limit_reached(self, report: ImportReport) -> bool:
        limit = self.config.max_errors
        if limit is None or report.failed_rows < limit:
            return False
        report.add_warning(max_errors_warning(limit))
        logger.warning("Stopping import: %d failed rows reached the limit of %d", report.failed_rows, limit)
        return True

    def _report_progress(self, processed: int, total: int) -> None:
        callback = self.config.progress
        if callback is None:
            return
        try:
            callback(processed, total, percent_of(processed, total))
        except Exception:
            logger.exception("Progress callback failed at %d/%d", processed, total)
