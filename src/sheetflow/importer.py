"""Import entry point: choose the sequential or parallel path for a file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .config import ImportConfig
from .errors import FileError, SheetflowError
from .io.readers import reader_kind
from .parallel.coordinator import ParallelCoordinator
from .pipeline import events
from .pipeline.result import ImportReport
from .pipeline.sequential import SequentialPipeline

__all__ = ["Importer", "import_file"]

logger = logging.getLogger(__name__)


class Importer:
    """Import files with one configuration.

    Fatal problems (missing file, unknown extension) raise before any row
    is read. Fatal errors raised during the run fire ``on_error`` and
    propagate; ``after_import`` only fires for a finished run. Both paths
    return the same ``ImportReport`` shape.
    """

    def __init__(self, config: ImportConfig):
        self.config = config
        self._coordinator = None

    def run(self, path: Union[str, Path]) -> ImportReport:
        path = Path(path)
        reader_kind(path)
        if not path.is_file():
            raise FileError.not_found(path)

        events.fire(self.config.events, events.BEFORE_IMPORT, str(path))
        try:
            if self.config.wants_parallel:
                self._coordinator = ParallelCoordinator(self.config)
                try:
                    report = self._coordinator.run(path)
                finally:
                    self._coordinator = None
            else:
                report = SequentialPipeline(self.config).run(path)
        except SheetflowError as exc:
            logger.error("Import of %s failed: %s", path, exc)
            events.fire(self.config.events, events.ON_ERROR, getattr(exc, "row_number", None), exc)
            raise
        events.fire(self.config.events, events.AFTER_IMPORT, report)
        return report

    def cancel(self) -> None:
        """Cancel a parallel run in progress (no effect on sequential runs)."""
        if self._coordinator is not None:
            self._coordinator.cancel()


def import_file(path: Union[str, Path], config: ImportConfig) -> ImportReport:
    """Import ``path`` with ``config``; shorthand for ``Importer(config).run(path)``."""
    return Importer(config).run(path)
