"""Streaming export of records to CSV/TSV/XLSX files."""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from itertools import chain
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .config import ExportConfig
from .errors import ExportError, PersistenceError, UnsupportedFormatError
from .io.writers import open_writer, writer_kind
from .pipeline.result import ExportReport

__all__ = [
    "CollectionExport",
    "QueryExport",
    "Exporter",
    "export_file",
    "sanitize_filename",
    "headings_for",
]

logger = logging.getLogger(__name__)

Formatter = Callable[[Any], Any]

_CONTROL_CHARS = re.compile(r"[\r\n\x00-\x1f\x7f]")
_UNSAFE_CHARS = re.compile(r'["\\/:*?<>|]')


def sanitize_filename(name: str, default: str = "export") -> str:
    """Strip control characters, directory parts and reserved characters."""
    name = _CONTROL_CHARS.sub("", name or "")
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_CHARS.sub("", name).strip()
    if name in ("", ".", ".."):
        return default
    return name


def headings_for(columns: Sequence[Any]) -> List[str]:
    """``first_name`` -> ``First Name``."""
    return [str(c).replace("_", " ").title() for c in columns]


def _row_values(item: Any, columns: Optional[Sequence[Any]], formatters: Mapping[Any, Formatter]) -> List[Any]:
    if isinstance(item, Mapping):
        keys = columns if columns is not None else list(item.keys())
        return [formatters[k](item.get(k)) if k in formatters else item.get(k) for k in keys]
    if hasattr(item, "to_dict"):
        return _row_values(item.to_dict(), columns, formatters)
    if isinstance(item, (list, tuple)):
        values = list(item)
        if columns is not None:
            return [formatters[c](v) if c in formatters else v for c, v in zip(columns, values)]
        return values
    return [item]


@dataclass
class CollectionExport:
    """Export an in-memory or generated sequence of records.

    Args:
        rows: Mappings, sequences, or objects with ``to_dict()``
        columns: Keys to export, in order; default: keys of the first mapping
        headers: Header row; default: title-cased column names. Pass an
            empty list to omit the header row.
        formatters: Per-column value formatters
        title: Sheet title (XLSX)
    """

    rows: Iterable[Any]
    columns: Optional[Sequence[Any]] = None
    headers: Optional[Sequence[Any]] = None
    formatters: Optional[Mapping[Any, Formatter]] = None
    title: str = "Sheet1"

    def open(self, chunk_size: int) -> Tuple[Optional[List[Any]], Iterator[List[Any]], Callable[[], None]]:
        """Return ``(headers, rows, close)`` for the writer."""
        items = iter(self.rows)
        columns = list(self.columns) if self.columns is not None else None
        if columns is None:
            first = next(items, None)
            if first is None:
                return (list(self.headers) if self.headers else None), iter(()), lambda: None
            if isinstance(first, Mapping):
                columns = list(first.keys())
            elif hasattr(first, "to_dict"):
                columns = list(first.to_dict().keys())
            items = chain([first], items)

        formatters = dict(self.formatters or {})
        rows = (_row_values(item, columns, formatters) for item in items)
        return _resolve_headers(self.headers, columns), rows, lambda: None


@dataclass
class QueryExport:
    """Export a table through a sink factory, streamed ``chunk_size`` rows at a time.

    Args:
        sink: Factory with ``connect()`` returning a sink that has ``iter_rows``
        columns: Columns to select; default: all
        order_by: Column to order by
        title: Sheet title; default: the table name
    """

    sink: Any
    columns: Optional[Sequence[str]] = None
    headers: Optional[Sequence[Any]] = None
    formatters: Optional[Mapping[Any, Formatter]] = None
    order_by: Optional[str] = None
    title: Optional[str] = None

    def open(self, chunk_size: int):
        conn = self.sink.connect()
        try:
            records = conn.iter_rows(self.columns, chunk_size=chunk_size, order_by=self.order_by)
            first = next(records, None)
        except BaseException:
            conn.close()
            raise
        columns = list(self.columns) if self.columns else (list(first.keys()) if first else [])
        formatters = dict(self.formatters or {})
        items = chain([first], records) if first is not None else iter(())
        rows = (_row_values(item, columns, formatters) for item in items)
        return _resolve_headers(self.headers, columns), rows, conn.close

    @property
    def sheet_title(self) -> str:
        return self.title or getattr(self.sink, "table", None) or "Sheet1"


def _resolve_headers(headers: Optional[Sequence[Any]], columns: Optional[Sequence[Any]]) -> Optional[List[Any]]:
    if headers is not None:
        return list(headers) or None
    if columns:
        return headings_for(columns)
    return None


def _title_of(source: Union[CollectionExport, QueryExport]) -> str:
    if isinstance(source, QueryExport):
        return source.sheet_title
    return source.title


class Exporter:
    """Write export sources to files and report the outcome.

    Unknown extensions raise ``UnsupportedFormatError``; failures while
    writing are returned as a failed ``ExportReport``.
    """

    def __init__(self, config: Optional[ExportConfig] = None):
        self.config = config or ExportConfig()

    def export(self, source: Union[CollectionExport, QueryExport], path: Union[str, Path]) -> ExportReport:
        return self.export_sheets([source], path)

    def export_sheets(
        self,
        sources: Sequence[Union[CollectionExport, QueryExport]],
        path: Union[str, Path],
    ) -> ExportReport:
        """Write several sources as sheets of one workbook (XLSX only for >1)."""
        kind = writer_kind(path)
        if len(sources) > 1 and kind != "xlsx":
            raise UnsupportedFormatError(f"{Path(path).suffix} (multiple sheets)")

        started = time.perf_counter()
        total = 0
        try:
            with open_writer(path, self.config) as writer:
                for source in sources:
                    headers, rows, close = source.open(self.config.chunk_size)
                    try:
                        total += writer.write_sheet(_title_of(source), headers, rows)
                    finally:
                        close()
        except (ExportError, PersistenceError, OSError) as exc:
            duration = time.perf_counter() - started
            logger.error("Export to %s failed: %s", path, exc)
            return ExportReport.failed(path, str(exc), duration)

        duration = time.perf_counter() - started
        report = ExportReport.success(path, total, duration)
        logger.info("Exported %d rows to %s (%s)", total, path, report.file_size_formatted)
        return report

    def raw(self, source: Union[CollectionExport, QueryExport], fmt: str = "csv") -> bytes:
        """Export to bytes instead of a named file."""
        suffix = "." + fmt.lower().lstrip(".")
        writer_kind(suffix)
        with tempfile.TemporaryDirectory(prefix="sheetflow-") as tmp:
            target = os.path.join(tmp, "export" + suffix)
            report = self.export(source, target)
            if not report.is_successful:
                raise ExportError(report.error_message or "export failed")
            with open(target, "rb") as fh:
                return fh.read()


def export_file(
    source: Union[CollectionExport, QueryExport],
    path: Union[str, Path],
    config: Optional[ExportConfig] = None,
) -> ExportReport:
    """Shorthand for ``Exporter(config).export(source, path)``."""
    return Exporter(config).export(source, path)
