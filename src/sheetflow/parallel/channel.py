"""Worker result channel encoding.

A worker writes its counters once, at exit, as ``MARKER + JSON``. Anything
written to the channel before the marker is noise; the payload is whatever
follows the last marker.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Union

from .types import WorkerResult

__all__ = ["RESULT_MARKER", "encode_result", "decode_result"]

logger = logging.getLogger(__name__)

RESULT_MARKER = b"___SHEETFLOW_RESULT___"


def encode_result(result: WorkerResult) -> bytes:
    return RESULT_MARKER + json.dumps(result.to_dict(), separators=(",", ":")).encode("ascii")


def decode_result(data: Union[bytes, str, None]) -> Optional[WorkerResult]:
    """Parse the payload after the last marker; None if absent or malformed."""
    if not data:
        return None
    if isinstance(data, str):
        data = data.encode("utf-8", "replace")
    pos = data.rfind(RESULT_MARKER)
    if pos < 0:
        logger.debug("No result marker in %d bytes of worker output", len(data))
        return None
    payload = data[pos + len(RESULT_MARKER):].strip()
    try:
        decoded = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        logger.debug("Unparseable worker payload: %r", payload[:200])
        return None
    return WorkerResult.from_dict(decoded)
