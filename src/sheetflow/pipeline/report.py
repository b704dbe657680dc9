# sheetflow/pipeline/report.py
from __future__ import annotations

import logging
from typing import Optional

from ..utilities.display import truncate_path_to_fit
from .progress import ProgressFormatter
from .result import ExportReport, ImportReport

logger = logging.getLogger(__name__)

__all__ = [
    "format_import_summary",
    "print_import_summary",
    "log_import_summary",
    "format_export_summary",
]


def _abbrev(s: str, width: int = 96) -> str:
    """Return s truncated with an ellipsis if it exceeds width."""
    return s if len(s) <= width else (s[: max(0, width - 1)] + "…")


def _heading(text: str, color: bool) -> str:
    return f"\033[4m{text}\033[0m" if color else text


def format_import_summary(
    report: ImportReport,
    *,
    source: Optional[str] = None,
    title: str = "Import Summary",
    color: bool = False,
) -> str:
    """
    Build a formatted, human-readable summary of a finished import.
    """
    status = "OK" if report.is_successful else "FAILED ROWS"
    if color:
        status = f"\033[32m{status}\033[0m" if report.is_successful else f"\033[31m{status}\033[0m"

    lines = [_heading(title, color)]
    if source:
        lines.append("Source file:        " + truncate_path_to_fit(source, "Source file:        "))
    lines.extend([
        f"Status:             {status}",
        f"Rows read:          {report.total_rows:,}",
        f"Rows imported:      {report.success_rows:,}",
        f"Rows failed:        {report.failed_rows:,}",
        f"Rows skipped:       {report.skipped_rows:,}",
        f"Duration:           {ProgressFormatter.format_elapsed_time(report.duration)}",
        f"Throughput:         {ProgressFormatter.format_rate(report.rows_per_second)}",
    ])
    if report.errors:
        lines.append(f"Row errors:         {len(report.errors):,}")
    for warning in report.warnings:
        lines.append(f"Warning:            {_abbrev(warning)}")
    return "\n".join(lines) + "\n"


def print_import_summary(report: ImportReport, **kwargs) -> None:
    """Print the import summary to stdout."""
    print(format_import_summary(report, **kwargs), end="")


def log_import_summary(report: ImportReport, *, color: bool = False, **kwargs) -> None:
    """Log the import summary at INFO level, one record per line."""
    summary = format_import_summary(report, color=color, **kwargs)
    for line in summary.rstrip("\n").splitlines():
        logger.info(line)


def format_export_summary(report: ExportReport, *, title: str = "Export Summary") -> str:
    lines = [
        title,
        "Output file:        " + truncate_path_to_fit(report.file_path, "Output file:        "),
        f"Rows written:       {report.total_rows:,}",
        f"File size:          {report.file_size_formatted}",
        f"Duration:           {ProgressFormatter.format_elapsed_time(report.duration)}",
    ]
    if report.error_message:
        lines.append(f"Error:              {_abbrev(report.error_message)}")
    return "\n".join(lines) + "\n"
