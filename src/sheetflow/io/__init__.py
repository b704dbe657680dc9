from .readers import CsvRowSource, RowSource, XlsxRowSource, open_row_source
from .writers import CsvWriter, XlsxWriter, open_writer

__all__ = [
    "RowSource",
    "CsvRowSource",
    "XlsxRowSource",
    "open_row_source",
    "CsvWriter",
    "XlsxWriter",
    "open_writer",
]
