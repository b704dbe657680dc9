"""Parallel import core: partitioning, worker processes and supervision."""

from .partitioning import owns, partition
from .types import WorkerAssignment, WorkerResult, WorkerTask

__all__ = ["owns", "partition", "WorkerAssignment", "WorkerResult", "WorkerTask"]
