"""Round-robin partitioning of data rows across workers."""

from __future__ import annotations

from typing import Iterable, List

__all__ = ["owns", "partition"]


def owns(ordinal: int, worker_index: int, total_workers: int) -> bool:
    """Row ``ordinal`` belongs to worker ``ordinal mod total_workers``."""
    return ordinal % total_workers == worker_index


def partition(ordinals: Iterable[int], total_workers: int) -> List[List[int]]:
    """Split ordinals into per-worker lists (for planning and diagnostics)."""
    buckets: List[List[int]] = [[] for _ in range(total_workers)]
    for ordinal in ordinals:
        buckets[ordinal % total_workers].append(ordinal)
    return buckets
