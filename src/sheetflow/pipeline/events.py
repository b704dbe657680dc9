"""Lifecycle hooks for import runs.

Hooks are fire-and-forget: an exception raised by a hook is logged and
swallowed so it cannot abort the import.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List, Optional

from ..errors import ConfigurationError

__all__ = ["EventHooks", "EVENTS", "fire"]

logger = logging.getLogger(__name__)

BEFORE_IMPORT = "before_import"  # (path)
AFTER_IMPORT = "after_import"  # (report)
BEFORE_CHUNK = "before_chunk"  # (chunk_index, chunk_size)
AFTER_CHUNK = "after_chunk"  # (chunk_index, chunk_size)
ON_ERROR = "on_error"  # (row_number, exception)

EVENTS = (BEFORE_IMPORT, AFTER_IMPORT, BEFORE_CHUNK, AFTER_CHUNK, ON_ERROR)


class EventHooks:
    """Registry of callbacks keyed by lifecycle event name."""

    def __init__(self, hooks: Optional[Dict[str, Callable[..., Any]]] = None):
        self._hooks: DefaultDict[str, List[Callable[..., Any]]] = defaultdict(list)
        for name, callback in (hooks or {}).items():
            self.on(name, callback)

    def on(self, name: str, callback: Callable[..., Any]) -> "EventHooks":
        if name not in EVENTS:
            raise ConfigurationError(f"Unknown event {name!r}; expected one of {', '.join(EVENTS)}")
        if not callable(callback):
            raise ConfigurationError(f"Hook for {name!r} is not callable")
        self._hooks[name].append(callback)
        return self

    def has(self, name: str) -> bool:
        return bool(self._hooks.get(name))

    def fire(self, name: str, *args: Any) -> None:
        for callback in self._hooks.get(name, ()):
            try:
                callback(*args)
            except Exception:
                logger.exception("Hook %r raised; continuing", name)


def fire(hooks: Optional[EventHooks], name: str, *args: Any) -> None:
    """Fire ``name`` on ``hooks`` if any are configured."""
    if hooks is not None:
        hooks.fire(name, *args)
