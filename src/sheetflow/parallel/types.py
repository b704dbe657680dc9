# sheetflow/parallel/types.py
"""Shared types for the parallel import path."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..config import CsvDialect, UpsertConfig
from ..validation import Validator
from .partitioning import owns

__all__ = ["WorkerAssignment", "WorkerTask", "WorkerResult"]


@dataclass(frozen=True)
class WorkerAssignment:
    """Round-robin slice of a file owned by one worker."""

    worker_index: int
    """Zero-based index of this worker"""

    total_workers: int
    """Number of workers sharing the file"""

    file_path: str
    """Input file, opened independently by every worker"""

    def owns(self, ordinal: int) -> bool:
        """True if data row ``ordinal`` belongs to this worker."""
        return owns(ordinal, self.worker_index, self.total_workers)


@dataclass(frozen=True)
class WorkerTask:
    """Everything a worker needs, passed across the process boundary."""

    assignment: WorkerAssignment
    sink: Any
    """Sink factory; the worker calls ``connect()`` for its own connection"""

    headers: Optional[List[Any]]
    """Header list read once by the coordinator (None = positional rows)"""

    header_row: Optional[int] = 1
    dialect: CsvDialect = field(default_factory=CsvDialect)
    sheet: Optional[Union[int, str]] = None
    batch_size: int = 500
    upsert: Optional[UpsertConfig] = None
    mapper: Optional[Callable[[Dict[Any, Any]], Optional[Dict[Any, Any]]]] = None
    validator: Optional[Validator] = None
    skip_invalid_rows: bool = False
    max_errors: Optional[int] = None
    """Per-worker bound; the coordinator re-checks the merged total"""

    chunk_size: int = 1000
    use_transactions: bool = False
    gc_interval: int = 100_000

    @property
    def path(self) -> Path:
        return Path(self.assignment.file_path)

    @property
    def name(self) -> str:
        return f"sheetflow:worker-{self.assignment.worker_index}"


@dataclass(frozen=True)
class WorkerResult:
    """Counters a worker reports exactly once, at exit.

    ``total`` may exceed ``success + failed + skipped``: rows the mapper
    skips are counted in ``total`` only. ``stopped`` is set when the
    worker hit ``max_errors``; ``invalid_row`` and ``invalid_errors``
    name the row that ended the worker when invalid rows are not skipped.
    """

    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    stopped: bool = False
    invalid_row: Optional[int] = None
    invalid_errors: Tuple[str, ...] = ()

    def __add__(self, other: "WorkerResult") -> "WorkerResult":
        first_invalid = min(
            (r for r in (self, other) if r.invalid_row is not None),
            key=lambda r: r.invalid_row,
            default=None,
        )
        return WorkerResult(
            self.total + other.total,
            self.success + other.success,
            self.failed + other.failed,
            self.skipped + other.skipped,
            self.stopped or other.stopped,
            first_invalid.invalid_row if first_invalid else None,
            first_invalid.invalid_errors if first_invalid else (),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "stopped": self.stopped,
        }
        if self.invalid_row is not None:
            data["invalid"] = {"row": self.invalid_row, "errors": list(self.invalid_errors)}
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["WorkerResult"]:
        """Build from a decoded payload; None if the counters are not valid.

        ``total``, ``success`` and ``failed`` are required; the other keys
        default when absent.
        """
        if not isinstance(data, dict):
            return None
        values = []
        for key in ("total", "success", "failed", "skipped"):
            value = data.get(key, 0 if key == "skipped" else None)
            if not _is_count(value):
                return None
            values.append(value)

        stopped = data.get("stopped", False)
        if not isinstance(stopped, bool):
            return None

        invalid = data.get("invalid")
        if invalid is None:
            return cls(*values, stopped=stopped)
        if not isinstance(invalid, dict) or not _is_count(invalid.get("row")):
            return None
        errors = invalid.get("errors", [])
        if not isinstance(errors, list) or not all(isinstance(e, str) for e in errors):
            return None
        return cls(*values, stopped=stopped, invalid_row=invalid["row"], invalid_errors=tuple(errors))


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
