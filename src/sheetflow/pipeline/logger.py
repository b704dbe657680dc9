# sheetflow/pipeline/logger.py
from __future__ import annotations

import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Union

__all__ = ["setup_logger", "log_file_for", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_file_for(target: Union[str, Path], filename_prefix: str = "sheetflow") -> Path:
    """Timestamped log path in ``target`` (a directory) or beside it (a file).

    The directory is created if missing.
    """
    p = Path(target).expanduser()
    log_dir = p if (p.is_dir() or not p.suffix) else p.parent
    log_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    return log_dir / f"{filename_prefix}_{ts}.log"


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ValueError(f"Unknown log level: {level!r}")
        return value
    return level


def _handlers(log_path: Path, console: bool, rotate: bool, max_bytes: int, backup_count: int) -> List[logging.Handler]:
    if rotate:
        handlers: List[logging.Handler] = [
            RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        ]
    else:
        handlers = [logging.FileHandler(log_path, mode="w", encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler())
    return handlers


def setup_logger(
    target: Union[str, Path],
    *,
    level: Union[int, str] = logging.INFO,
    filename_prefix: str = "sheetflow",
    console: bool = False,
    rotate: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
    force: bool = False,
    logger_name: Optional[str] = None,
) -> Path:
    """
    Send log records to a timestamped file next to an import file or in a directory.

    Args:
        target: Directory for the log, or a file (typically the one being
            imported) whose directory receives it
        level: Level for the logger and its new handlers; names such as
            ``"debug"`` are accepted
        console: Also echo records to stderr
        rotate: Use a RotatingFileHandler bounded by ``max_bytes``
        force: Remove the logger's existing handlers first
        logger_name: Logger to configure; None for the root logger,
            ``"sheetflow"`` to leave the application's logging alone

    Returns:
        Path of the log file
    """
    log_path = log_file_for(target, filename_prefix)
    level = _coerce_level(level)

    logger = logging.getLogger(logger_name)
    if force:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _handlers(log_path, console, rotate, max_bytes, backup_count):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.info("Logging to: %s", log_path)
    return log_path
