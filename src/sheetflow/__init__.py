"""sheetflow: streaming CSV/XLSX import and export with a parallel worker core."""

from .config import CsvDialect, ExportConfig, ImportConfig, ParallelConfig, UpsertConfig
from .db.sink import SqliteSink, SqliteSinkFactory
from .errors import (
    ConfigurationError,
    ExportError,
    FileError,
    MapperError,
    PersistenceError,
    SheetflowError,
    UnsupportedFormatError,
    ValidationError,
)
from .exporter import CollectionExport, Exporter, QueryExport, export_file, sanitize_filename
from .importer import Importer, import_file
from .mapping import FieldMapper, FieldRule, MapperRef
from .pipeline.events import EventHooks
from .pipeline.progress import TqdmProgress
from .pipeline.result import ExportReport, ImportReport

__version__ = "0.1.0"

__all__ = [
    "CsvDialect",
    "ExportConfig",
    "ImportConfig",
    "ParallelConfig",
    "UpsertConfig",
    "SqliteSink",
    "SqliteSinkFactory",
    "SheetflowError",
    "FileError",
    "UnsupportedFormatError",
    "ValidationError",
    "MapperError",
    "PersistenceError",
    "ConfigurationError",
    "ExportError",
    "CollectionExport",
    "QueryExport",
    "Exporter",
    "export_file",
    "sanitize_filename",
    "Importer",
    "import_file",
    "FieldMapper",
    "FieldRule",
    "MapperRef",
    "EventHooks",
    "TqdmProgress",
    "ImportReport",
    "ExportReport",
]
