# sheetflow/utilities/display.py
"""Display helpers shared by import and export summaries."""

from pathlib import Path
from typing import Union

__all__ = ["format_bytes", "truncate_path_to_fit"]

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(num_bytes: Union[int, float]) -> str:
    """Render a byte count with a binary unit suffix.

    Examples:
        >>> format_bytes(512)
        '512 B'
        >>> format_bytes(1536)
        '1.50 KB'
        >>> format_bytes(5 * 1024 ** 3)
        '5.00 GB'
    """
    size = float(num_bytes)
    if abs(size) < 1024:
        return f"{int(size)} B"
    for unit in _UNITS[1:]:
        size /= 1024.0
        if abs(size) < 1024:
            return f"{size:.2f} {unit}"
    return f"{size / 1024.0:.2f} PB"


def truncate_path_to_fit(path: Union[Path, str], prefix: str, total_width: int = 100) -> str:
    """Left-truncate ``path`` with ``...`` so ``prefix + path`` fits the width."""
    text = str(path)
    room = total_width - len(prefix)
    if len(text) <= room:
        return text
    if room < 4:
        return "..."
    return "..." + text[-(room - 3):]
