# sheetflow/config.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError

__all__ = [
    "CsvDialect",
    "UpsertConfig",
    "ParallelConfig",
    "ImportConfig",
    "ExportConfig",
    "DRIVERS",
    "MAX_WORKERS",
]

# Parallel driver names
DRIVER_AUTO = "auto"
DRIVER_PROCESS = "process"
DRIVER_FORK = "fork"
DRIVER_SYNC = "sync"
DRIVERS = (DRIVER_AUTO, DRIVER_PROCESS, DRIVER_FORK, DRIVER_SYNC)

MIN_WORKERS = 1
MAX_WORKERS = 16

ProgressCallback = Callable[[int, int, float], None]


# Delimited-text options shared by the CSV reader and writer
@dataclass(frozen=True)
class CsvDialect:
    delimiter: str = ","
    quotechar: str = '"'
    escapechar: Optional[str] = "\\"  # Read side only: keeps a quote inside a quoted field literal
    encoding: str = "utf-8"
    detect_delimiter: bool = False  # Sniff delimiter from the first lines on read

    @classmethod
    def tsv(cls, **overrides) -> "CsvDialect":
        return cls(delimiter="\t", **overrides)

    def with_delimiter(self, delimiter: str) -> "CsvDialect":
        return replace(self, delimiter=delimiter)


@dataclass(frozen=True)
class UpsertConfig:
    """Insert-or-update keyed by ``unique_by``.

    ``update_columns=None`` overwrites every non-key column on conflict.
    """
    unique_by: Tuple[str, ...]
    update_columns: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if isinstance(self.unique_by, str):
            object.__setattr__(self, "unique_by", (self.unique_by,))
        else:
            object.__setattr__(self, "unique_by", tuple(self.unique_by))
        if not self.unique_by:
            raise ConfigurationError("upsert requires at least one unique_by column")
        if self.update_columns is not None:
            object.__setattr__(self, "update_columns", tuple(self.update_columns))


@dataclass(frozen=True)
class ParallelConfig:
    """Worker-process options for the parallel import path.

    Driver options:
        - "auto": fork if available, then process spawn, then sequential
        - "process": fresh interpreter per worker; mapper must be picklable
        - "fork": forked child per worker; closures are inherited
        - "sync": run sequentially in-process
    """
    workers: int = 4
    driver: str = DRIVER_AUTO
    poll_interval: Optional[float] = None  # None = 5 ms for fork, 10 ms for process
    grace_period: float = 0.1  # Seconds between SIGTERM and SIGKILL on cancel

    def __post_init__(self):
        if self.driver not in DRIVERS:
            raise ConfigurationError(
                f"Unknown parallel driver {self.driver!r}; expected one of {', '.join(DRIVERS)}"
            )
        if self.grace_period < 0:
            raise ConfigurationError("grace_period must be non-negative")

    @property
    def clamped_workers(self) -> int:
        return max(MIN_WORKERS, min(MAX_WORKERS, int(self.workers)))


# Import pipeline options
@dataclass(frozen=True)
class ImportConfig:
    # Persistence: a picklable factory exposing connect() -> BatchSink
    sink: Any

    # Optional capabilities, checked once per run
    mapper: Optional[Callable[[Dict[Any, Any]], Optional[Dict[Any, Any]]]] = None
    rules: Optional[Mapping[str, Union[str, Sequence[str]]]] = None
    messages: Optional[Mapping[str, str]] = None
    validator: Optional[Callable[[Dict[Any, Any]], Sequence[str]]] = None
    progress: Optional[ProgressCallback] = None
    events: Any = None  # EventHooks

    # Row handling
    skip_invalid_rows: bool = False
    max_errors: Optional[int] = None
    chunk_size: int = 1000
    batch_size: int = 500
    gc_interval: int = 100_000

    # Source layout
    header_row: Optional[int] = 1  # 1-indexed; None or 0 yields positional records
    dialect: CsvDialect = field(default_factory=CsvDialect)
    sheet: Optional[Union[int, str]] = None

    # Persistence behaviour
    use_transactions: bool = False
    upsert: Optional[UpsertConfig] = None

    # Parallelism (None = sequential)
    parallel: Optional[ParallelConfig] = None

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ConfigurationError("chunk_size must be at least 1")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.max_errors is not None and self.max_errors < 0:
            raise ConfigurationError("max_errors must be non-negative")
        if self.header_row is not None and self.header_row < 0:
            raise ConfigurationError("header_row must be 1-indexed")

    @property
    def has_header(self) -> bool:
        return bool(self.header_row)

    @property
    def wants_parallel(self) -> bool:
        return self.parallel is not None and self.parallel.clamped_workers > 1


@dataclass(frozen=True)
class ExportConfig:
    chunk_size: int = 1000
    dialect: CsvDialect = field(default_factory=CsvDialect)
    include_bom: bool = False
    date_format: str = "%Y-%m-%d %H:%M:%S"

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ConfigurationError("chunk_size must be at least 1")
