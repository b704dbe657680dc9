"""Exception hierarchy for sheetflow.

Fatal conditions (missing files, unknown formats, invalid configuration,
validation failures with ``skip_invalid_rows`` off) are raised to the
caller. Row-level mapper failures and batch persistence failures are
caught by the pipeline and counted; lost workers and the max-errors stop
are recorded as report warnings and never raised.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

__all__ = [
    "SheetflowError",
    "FileError",
    "UnsupportedFormatError",
    "ValidationError",
    "MapperError",
    "PersistenceError",
    "ConfigurationError",
    "ExportError",
]


class SheetflowError(Exception):
    """Base class for all sheetflow errors."""


class FileError(SheetflowError):
    """Input file is missing or cannot be opened."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    @classmethod
    def not_found(cls, path) -> "FileError":
        return cls(f"File not found: {path}", path=str(path))

    @classmethod
    def unreadable(cls, path, reason: str = "") -> "FileError":
        detail = f" ({reason})" if reason else ""
        return cls(f"Unable to open file: {path}{detail}", path=str(path))


class UnsupportedFormatError(SheetflowError):
    """No reader or writer is registered for the file extension."""

    def __init__(self, extension: str):
        super().__init__(f"Unsupported file format: {extension or '(none)'}")
        self.extension = extension


class ValidationError(SheetflowError):
    """A row failed its validation rules while invalid rows are not skipped."""

    def __init__(self, row_number: int, errors: Iterable[str]):
        self.row_number = row_number
        self.errors: List[str] = list(errors)
        super().__init__(
            f"Validation failed on row {row_number}: " + "; ".join(self.errors)
        )


class MapperError(SheetflowError):
    """The mapping function rejected a single row."""


class PersistenceError(SheetflowError):
    """A batch insert or upsert failed in the sink."""


class ConfigurationError(SheetflowError):
    """Import or export configuration is invalid."""


class ExportError(SheetflowError):
    """Writing an export file failed."""
