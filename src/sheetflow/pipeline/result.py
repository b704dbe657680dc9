"""Import and export report values."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..utilities.display import format_bytes

__all__ = ["RowError", "ImportReport", "ExportReport"]


@dataclass(frozen=True)
class RowError:
    row: int
    message: str
    data: Optional[Dict[Any, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"row": self.row, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass
class ImportReport:
    """Aggregate outcome of one import run.

    Filled in incrementally by the sequential pipeline, or merged once from
    worker counters on the parallel path (which carries no per-row errors).
    Mapper-skipped rows count toward ``total_rows`` only.
    """

    total_rows: int = 0
    success_rows: int = 0
    failed_rows: int = 0
    skipped_rows: int = 0
    duration: float = 0.0
    errors: List[RowError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, row: int, message: str, data: Optional[Dict[Any, Any]] = None) -> None:
        self.errors.append(RowError(row, message, dict(data) if data is not None else None))

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def rows_per_second(self) -> float:
        if self.duration <= 0:
            return 0.0
        return self.total_rows / self.duration

    @property
    def is_successful(self) -> bool:
        return self.failed_rows == 0

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "success_rows": self.success_rows,
            "failed_rows": self.failed_rows,
            "skipped_rows": self.skipped_rows,
            "duration": round(self.duration, 3),
            "rows_per_second": round(self.rows_per_second, 2),
            "is_successful": self.is_successful,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ExportReport:
    """Outcome of writing one export file."""

    file_path: str
    total_rows: int = 0
    duration: float = 0.0
    file_size: int = 0
    error_message: Optional[str] = None

    @classmethod
    def success(cls, file_path: Union[str, Path], total_rows: int, duration: float) -> "ExportReport":
        path = Path(file_path)
        size = path.stat().st_size if path.exists() else 0
        return cls(str(path), total_rows, duration, size)

    @classmethod
    def failed(cls, file_path: Union[str, Path], message: str, duration: float = 0.0) -> "ExportReport":
        return cls(str(file_path), 0, duration, 0, message)

    @property
    def is_successful(self) -> bool:
        return self.error_message is None

    @property
    def rows_per_second(self) -> float:
        if self.duration <= 0:
            return 0.0
        return self.total_rows / self.duration

    @property
    def file_size_formatted(self) -> str:
        return format_bytes(self.file_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "total_rows": self.total_rows,
            "duration": round(self.duration, 3),
            "rows_per_second": round(self.rows_per_second, 2),
            "file_size": self.file_size,
            "file_size_formatted": self.file_size_formatted,
            "is_successful": self.is_successful,
            "error_message": self.error_message,
        }
