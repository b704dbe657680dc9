"""Streaming row sources for delimited text and spreadsheet files."""

from __future__ import annotations

import csv
import logging
import zipfile
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from ..config import CsvDialect
from ..errors import FileError, UnsupportedFormatError

__all__ = [
    "Record",
    "RowSource",
    "CsvRowSource",
    "XlsxRowSource",
    "open_row_source",
    "reader_kind",
    "detect_delimiter",
    "escape_quoted_lines",
    "is_blank_row",
    "normalize_row",
    "clean_headers",
]

logger = logging.getLogger(__name__)

Record = Dict[Any, Any]
Predicate = Callable[[int], bool]

CSV_EXTENSIONS = {".csv", ".txt"}
TSV_EXTENSIONS = {".tsv"}
XLSX_EXTENSIONS = {".xlsx", ".xlsm"}

DELIMITER_CANDIDATES = (",", ";", "\t", "|")
DETECT_SAMPLE_LINES = 5


def reader_kind(path: Union[str, Path]) -> str:
    """Return ``"csv"``, ``"tsv"`` or ``"xlsx"`` for a path, by extension.

    Raises:
        UnsupportedFormatError: If no reader handles the extension
    """
    ext = Path(path).suffix.lower()
    if ext in CSV_EXTENSIONS:
        return "csv"
    if ext in TSV_EXTENSIONS:
        return "tsv"
    if ext in XLSX_EXTENSIONS:
        return "xlsx"
    raise UnsupportedFormatError(ext)


def is_blank_row(values: Sequence[Any]) -> bool:
    """A row is blank when every cell is None or whitespace-only text."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return False
    return True


def clean_headers(values: Sequence[Any]) -> List[Any]:
    """Trim header cells; empty cells are keyed by their column index."""
    headers: List[Any] = []
    for idx, value in enumerate(values):
        text = "" if value is None else str(value).strip()
        if idx == 0:
            text = text.lstrip("\ufeff")
        headers.append(text if text else idx)
    return headers


def normalize_row(headers: Sequence[Any], values: Sequence[Any]) -> Record:
    """Pad short rows with None and truncate long rows to the header width."""
    width = len(headers)
    cells = list(values[:width])
    if len(cells) < width:
        cells.extend([None] * (width - len(cells)))
    return dict(zip(headers, cells))


def detect_delimiter(path: Union[str, Path], encoding: str = "utf-8") -> str:
    """Pick the most frequent candidate delimiter in the first few lines.

    Falls back to a comma when none of the candidates appear.
    """
    counts: Counter = Counter()
    try:
        with open(path, "r", encoding=encoding, errors="replace", newline="") as fh:
            for line_no, line in enumerate(fh):
                if line_no >= DETECT_SAMPLE_LINES:
                    break
                for candidate in DELIMITER_CANDIDATES:
                    counts[candidate] += line.count(candidate)
    except OSError as exc:
        raise FileError.unreadable(path, str(exc)) from exc

    best = ","
    best_count = 0
    for candidate in DELIMITER_CANDIDATES:
        if counts[candidate] > best_count:
            best, best_count = candidate, counts[candidate]
    return best


# Field states for escape_quoted_lines
_FIELD_START, _UNQUOTED, _QUOTED, _QUOTE_SEEN = range(4)


def escape_quoted_lines(lines: Iterator[str], dialect: CsvDialect) -> Iterator[str]:
    """Rewrite escaped quotes inside quoted fields as doubled quotes.

    The escape character only keeps a following quote from closing the
    field and stays in the value: ``"say \\"hi\\""`` reads as
    ``say \\"hi\\"``. Outside quoted fields it is an ordinary character.
    State carries across lines so quoted fields may span newlines.
    """
    esc, quote, delim = dialect.escapechar, dialect.quotechar, dialect.delimiter
    if not esc or esc == quote:
        yield from lines
        return

    state = _FIELD_START
    for line in lines:
        out: List[str] = []
        i, n = 0, len(line)
        while i < n:
            ch = line[i]
            if state == _QUOTED:
                if ch == esc and i + 1 < n:
                    nxt = line[i + 1]
                    out.append(ch + (nxt * 2 if nxt == quote else nxt))
                    i += 2
                    continue
                if ch == quote:
                    state = _QUOTE_SEEN
            elif state == _QUOTE_SEEN:
                if ch == quote:
                    state = _QUOTED
                elif ch == delim or ch in "\r\n":
                    state = _FIELD_START
                else:
                    state = _UNQUOTED
            elif ch == delim or ch in "\r\n":
                state = _FIELD_START
            elif state == _FIELD_START:
                state = _QUOTED if ch == quote else _UNQUOTED
            out.append(ch)
            i += 1
        yield "".join(out)


class RowSource:
    """Base class for a lazy, format-independent cursor over data rows.

    Subclasses provide ``_iter_raw()`` (a fresh iterator of positional
    cell lists from the top of the file) and ``count()``. Header capture,
    blank-row skipping, ordinal numbering and row normalization live here.

    Args:
        path: File to read
        header_row: 1-indexed header position; None or 0 for positional rows
        headers: Column names to use instead of the file's header row.
            The header row is still skipped when one is configured.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        header_row: Optional[int] = 1,
        headers: Optional[Sequence[Any]] = None,
    ):
        self.path = Path(path)
        self.header_row = header_row or 0
        self._headers: Optional[List[Any]] = list(headers) if headers is not None else None
        self._iterators: List[Any] = []
        self._closed = False

    # -- context manager ---------------------------------------------------

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # -- subclass hooks ----------------------------------------------------

    def _iter_raw(self) -> Iterator[Sequence[Any]]:
        raise NotImplementedError

    def count(self) -> int:
        """Number of data rows ``rows()`` would yield; 0 means unknown."""
        raise NotImplementedError

    # -- public API --------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def headers(self) -> Optional[List[Any]]:
        """Column names from the header row, or None for positional rows."""
        if not self.header_row:
            return None
        if self._headers is None:
            raw = self._track(self._iter_raw())
            try:
                for line_no, values in enumerate(raw, start=1):
                    if line_no == self.header_row:
                        self._headers = clean_headers(values)
                        break
            finally:
                raw.close()
            if self._headers is None:
                self._headers = []
        return list(self._headers)

    def rows(self, owns: Optional[Predicate] = None) -> Iterator[Tuple[int, Record]]:
        """Yield ``(ordinal, record)`` for every non-blank data row.

        Ordinals count every data row after the header, blank ones
        included, so a round-robin predicate sees the same numbering in
        every process.

        Args:
            owns: Optional predicate on the ordinal; rows it rejects are
                skipped before any normalization work.
        """
        self._ensure_open()
        headers = self.headers() if self.header_row else None
        raw = self._track(self._iter_raw())
        return self._records(raw, headers, owns)

    def rows_batched(self, size: int) -> Iterator[List[Record]]:
        """Yield lists of at most ``size`` records."""
        if size < 1:
            raise ValueError("batch size must be at least 1")
        batch: List[Record] = []
        for _, record in self.rows():
            batch.append(record)
            if len(batch) >= size:
                yield batch
                batch = []
        if batch:
            yield batch

    def row_number(self, ordinal: int) -> int:
        """1-indexed file row for a data ordinal (for error messages)."""
        return self.header_row + ordinal + 1

    def close(self) -> None:
        for it in self._iterators:
            it.close()
        self._iterators.clear()
        self._closed = True

    # -- internals ---------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise FileError(f"Row source already closed: {self.path}", path=str(self.path))

    def _track(self, iterator):
        self._iterators = [it for it in self._iterators if it.gi_frame is not None]
        self._iterators.append(iterator)
        return iterator

    def _records(
        self,
        raw: Iterator[Sequence[Any]],
        headers: Optional[List[Any]],
        owns: Optional[Predicate],
    ) -> Iterator[Tuple[int, Record]]:
        ordinal = -1
        try:
            for line_no, values in enumerate(raw, start=1):
                if line_no <= self.header_row:
                    continue
                ordinal += 1
                if owns is not None and not owns(ordinal):
                    continue
                if is_blank_row(values):
                    continue
                if headers is None:
                    yield ordinal, dict(enumerate(values))
                else:
                    yield ordinal, normalize_row(headers, values)
        finally:
            raw.close()


class CsvRowSource(RowSource):
    """Delimited-text row source built on the ``csv`` module."""

    def __init__(
        self,
        path: Union[str, Path],
        *,
        dialect: Optional[CsvDialect] = None,
        header_row: Optional[int] = 1,
        headers: Optional[Sequence[Any]] = None,
    ):
        super().__init__(path, header_row=header_row, headers=headers)
        dialect = dialect or CsvDialect()
        if not self.path.is_file():
            raise FileError.not_found(self.path)
        if dialect.detect_delimiter:
            dialect = dialect.with_delimiter(detect_delimiter(self.path, dialect.encoding))
            logger.debug("Detected delimiter %r for %s", dialect.delimiter, self.path)
        self.dialect = dialect

    def _iter_raw(self) -> Iterator[List[str]]:
        try:
            fh = open(self.path, "r", encoding=self.dialect.encoding, newline="")
        except OSError as exc:
            raise FileError.unreadable(self.path, str(exc)) from exc
        with fh:
            reader = csv.reader(
                escape_quoted_lines(fh, self.dialect),
                delimiter=self.dialect.delimiter,
                quotechar=self.dialect.quotechar,
                doublequote=True,
            )
            try:
                yield from reader
            except (csv.Error, UnicodeDecodeError) as exc:
                raise FileError.unreadable(self.path, str(exc)) from exc

    def count(self) -> int:
        self._ensure_open()
        return sum(1 for _ in self.rows())


class XlsxRowSource(RowSource):
    """Spreadsheet row source using openpyxl's read-only mode.

    Args:
        sheet: Worksheet index (default 0) or name
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        sheet: Optional[Union[int, str]] = None,
        header_row: Optional[int] = 1,
        headers: Optional[Sequence[Any]] = None,
    ):
        super().__init__(path, header_row=header_row, headers=headers)
        if not self.path.is_file():
            raise FileError.not_found(self.path)
        try:
            self._workbook = openpyxl.load_workbook(self.path, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError) as exc:
            raise FileError.unreadable(self.path, str(exc)) from exc
        self._sheet = self._select_sheet(sheet)

    def _select_sheet(self, sheet):
        names = self._workbook.sheetnames
        if sheet is None:
            sheet = 0
        if isinstance(sheet, int):
            if not 0 <= sheet < len(names):
                self._workbook.close()
                raise FileError(f"Sheet index {sheet} out of range in {self.path}", path=str(self.path))
            return self._workbook[names[sheet]]
        if sheet not in names:
            self._workbook.close()
            raise FileError(f"Sheet {sheet!r} not found in {self.path}", path=str(self.path))
        return self._workbook[sheet]

    def _iter_raw(self) -> Iterator[Tuple[Any, ...]]:
        yield from self._sheet.iter_rows(values_only=True)

    def count(self) -> int:
        # Counting would need a full parse of the sheet XML
        return 0

    def close(self) -> None:
        if not self._closed:
            super().close()
            self._workbook.close()


def open_row_source(
    path: Union[str, Path],
    *,
    dialect: Optional[CsvDialect] = None,
    header_row: Optional[int] = 1,
    headers: Optional[Sequence[Any]] = None,
    sheet: Optional[Union[int, str]] = None,
) -> RowSource:
    """Open the row source matching the file extension.

    Raises:
        UnsupportedFormatError: Unknown extension
        FileError: File missing or unreadable
    """
    kind = reader_kind(path)
    if kind == "xlsx":
        return XlsxRowSource(path, sheet=sheet, header_row=header_row, headers=headers)
    dialect = dialect or CsvDialect()
    if kind == "tsv":
        dialect = dialect.with_delimiter("\t")
    return CsvRowSource(path, dialect=dialect, header_row=header_row, headers=headers)
