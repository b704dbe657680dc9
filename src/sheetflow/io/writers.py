"""File writers for exports: delimited text and XLSX."""

from __future__ import annotations

import csv
import datetime as dt
import re
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence, Union

import openpyxl

from ..config import CsvDialect, ExportConfig
from ..errors import ExportError, UnsupportedFormatError

__all__ = ["CsvWriter", "XlsxWriter", "open_writer", "writer_kind", "format_cell", "sheet_title"]

MAX_SHEET_TITLE = 31
_INVALID_TITLE_CHARS = re.compile(r"[\\/*?:\[\]]")


def writer_kind(path: Union[str, Path]) -> str:
    ext = Path(path).suffix.lower()
    if ext in (".csv", ".txt"):
        return "csv"
    if ext == ".tsv":
        return "tsv"
    if ext in (".xlsx", ".xlsm"):
        return "xlsx"
    raise UnsupportedFormatError(ext)


def format_cell(value: Any, date_format: str = "%Y-%m-%d %H:%M:%S") -> str:
    """Render a value for delimited text.

    None becomes an empty string, booleans become ``true``/``false`` and
    dates use ``date_format``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dt.datetime, dt.date)):
        return value.strftime(date_format)
    return str(value)


def sheet_title(title: Optional[str], fallback: str = "Sheet1") -> str:
    """Excel sheet titles: no ``\\/*?:[]`` and at most 31 characters."""
    cleaned = _INVALID_TITLE_CHARS.sub("", title or "").strip()
    return (cleaned or fallback)[:MAX_SHEET_TITLE]


class CsvWriter:
    """Single-sheet delimited writer."""

    supports_multiple_sheets = False

    def __init__(
        self,
        path: Union[str, Path],
        *,
        dialect: Optional[CsvDialect] = None,
        include_bom: bool = False,
        date_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        self.path = Path(path)
        self.dialect = dialect or CsvDialect()
        self.date_format = date_format
        self._sheets = 0
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "w", encoding=self.dialect.encoding, newline="")
        except OSError as exc:
            raise ExportError(f"Unable to open {self.path} for writing: {exc}") from exc
        if include_bom:
            self._fh.write("\ufeff")
        self._writer = csv.writer(
            self._fh,
            delimiter=self.dialect.delimiter,
            quotechar=self.dialect.quotechar,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def write_sheet(
        self,
        title: Optional[str],
        headers: Optional[Sequence[Any]],
        rows: Iterable[Sequence[Any]],
    ) -> int:
        if self._sheets:
            raise UnsupportedFormatError("csv (multiple sheets)")
        self._sheets += 1
        if headers:
            self._writer.writerow([format_cell(h, self.date_format) for h in headers])
        written = 0
        for row in rows:
            self._writer.writerow([format_cell(v, self.date_format) for v in row])
            written += 1
        return written

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


class XlsxWriter:
    """Multi-sheet XLSX writer using openpyxl's write-only workbook."""

    supports_multiple_sheets = True

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._workbook = openpyxl.Workbook(write_only=True)
        self._titles: set = set()
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _unique_title(self, title: Optional[str]) -> str:
        base = sheet_title(title, fallback=f"Sheet{len(self._titles) + 1}")
        candidate = base
        n = 1
        while candidate in self._titles:
            n += 1
            suffix = f" ({n})"
            candidate = base[: MAX_SHEET_TITLE - len(suffix)] + suffix
        self._titles.add(candidate)
        return candidate

    def write_sheet(
        self,
        title: Optional[str],
        headers: Optional[Sequence[Any]],
        rows: Iterable[Sequence[Any]],
    ) -> int:
        sheet = self._workbook.create_sheet(title=self._unique_title(title))
        if headers:
            sheet.append(list(headers))
        written = 0
        for row in rows:
            sheet.append(list(row))
            written += 1
        return written

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._titles:
            self._workbook.create_sheet(title="Sheet1")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._workbook.save(self.path)
        except OSError as exc:
            raise ExportError(f"Unable to write {self.path}: {exc}") from exc


def open_writer(path: Union[str, Path], config: Optional[ExportConfig] = None):
    """Open the writer matching the file extension."""
    config = config or ExportConfig()
    kind = writer_kind(path)
    if kind == "xlsx":
        return XlsxWriter(path)
    dialect = config.dialect
    if kind == "tsv":
        dialect = dialect.with_delimiter("\t")
    return CsvWriter(
        path,
        dialect=dialect,
        include_bom=config.include_bom,
        date_format=config.date_format,
    )
