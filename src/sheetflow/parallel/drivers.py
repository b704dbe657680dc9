"""Isolation drivers: capability probes and per-worker process handles."""

from __future__ import annotations

import logging
import multiprocessing as mp
import os
import pickle
import subprocess
import sys
import tempfile
from typing import Optional, Tuple

from ..config import DRIVER_AUTO, DRIVER_FORK, DRIVER_PROCESS, DRIVER_SYNC
from .channel import decode_result
from .types import WorkerResult, WorkerTask
from .worker import fork_entry

__all__ = [
    "is_interactive",
    "fork_supported",
    "process_supported",
    "select_driver",
    "WorkerHandle",
    "ForkWorker",
    "ProcessWorker",
    "POLL_INTERVALS",
]

logger = logging.getLogger(__name__)

# Supervise-loop sleep between liveness checks, per driver
POLL_INTERVALS = {DRIVER_FORK: 0.005, DRIVER_PROCESS: 0.010}


def is_interactive() -> bool:
    """True inside a REPL or ``python -i``; workers are not launched there."""
    return hasattr(sys, "ps1") or bool(sys.flags.interactive)


def fork_supported() -> bool:
    return (
        hasattr(os, "fork")
        and "fork" in mp.get_all_start_methods()
        and not is_interactive()
    )


def process_supported() -> bool:
    return bool(sys.executable) and not is_interactive()


def select_driver(preference: str = DRIVER_AUTO) -> str:
    """Resolve a driver preference against what the platform supports.

    An explicit, supported preference wins; otherwise fork is tried, then
    process spawn, then the sequential fallback.
    """
    if preference == DRIVER_FORK and fork_supported():
        return DRIVER_FORK
    if preference == DRIVER_PROCESS and process_supported():
        return DRIVER_PROCESS
    if preference == DRIVER_SYNC:
        return DRIVER_SYNC
    if fork_supported():
        chosen = DRIVER_FORK
    elif process_supported():
        chosen = DRIVER_PROCESS
    else:
        chosen = DRIVER_SYNC
    if preference not in (DRIVER_AUTO, chosen):
        logger.info("Driver %r unavailable here; using %r", preference, chosen)
    return chosen


class WorkerHandle:
    """One running worker and its result channel.

    Lifecycle: ``start()``, then ``done()`` polled until True, then
    ``outcome()``; ``close()`` releases the channel and any temp files and
    is safe to call on every exit path.
    """

    def __init__(self, task: WorkerTask):
        self.task = task
        self.index = task.assignment.worker_index
        self._data = b""

    def start(self) -> None:
        raise NotImplementedError

    def done(self) -> bool:
        raise NotImplementedError

    @property
    def exitcode(self) -> Optional[int]:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError

    def kill(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def outcome(self) -> Tuple[Optional[WorkerResult], str]:
        """Parsed result, or None with the reason it is missing."""
        code = self.exitcode
        if code is None:
            return None, "still running"
        if code != 0:
            if code < 0:
                return None, f"terminated by signal {-code}"
            return None, f"exit code {code}"
        result = decode_result(self._data)
        if result is None:
            return None, "no parseable result"
        return result, "ok"


class ForkWorker(WorkerHandle):
    """Forked child writing to a one-way pipe. Inherits closures as-is."""

    def __init__(self, task: WorkerTask):
        super().__init__(task)
        self._ctx = mp.get_context("fork")
        self._reader = None
        self._proc = None
        self._exitcode: Optional[int] = None

    def start(self) -> None:
        reader, writer = self._ctx.Pipe(duplex=False)
        self._reader = reader
        self._proc = self._ctx.Process(
            target=fork_entry,
            args=(self.task, writer),
            name=self.task.name,
        )
        try:
            self._proc.start()
        finally:
            writer.close()

    def _drain(self) -> None:
        if self._reader is None or self._reader.closed:
            return
        try:
            while self._reader.poll():
                self._data += self._reader.recv_bytes()
        except (EOFError, OSError):
            self._reader.close()

    def done(self) -> bool:
        if self._proc is None:
            return True
        self._drain()
        if self._proc.is_alive():
            return False
        self._proc.join(0)
        self._drain()
        return True

    @property
    def exitcode(self) -> Optional[int]:
        if self._proc is None:
            return self._exitcode
        return self._proc.exitcode

    def terminate(self) -> None:
        if self._proc is not None and self._proc.is_alive():
            self._proc.terminate()

    def kill(self) -> None:
        if self._proc is None:
            return
        if self._proc.is_alive():
            self._proc.kill()
        self._proc.join(1.0)

    def close(self) -> None:
        if self._reader is not None and not self._reader.closed:
            self._reader.close()
        if self._proc is not None and self._proc.exitcode is not None:
            self._exitcode = self._proc.exitcode
            self._proc.close()
            self._proc = None


class ProcessWorker(WorkerHandle):
    """Fresh interpreter running ``python -m sheetflow.parallel``.

    The task is pickled to a temp file; the child's stdout is the channel.
    """

    def __init__(self, task: WorkerTask):
        super().__init__(task)
        self._proc: Optional[subprocess.Popen] = None
        self._task_file: Optional[str] = None

    def start(self) -> None:
        fd, self._task_file = tempfile.mkstemp(prefix="sheetflow-task-", suffix=".pkl")
        with os.fdopen(fd, "wb") as fh:
            pickle.dump(self.task, fh, protocol=pickle.HIGHEST_PROTOCOL)

        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(p for p in sys.path if p)
        self._proc = subprocess.Popen(
            [sys.executable, "-m", "sheetflow.parallel", self._task_file],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            env=env,
        )
        os.set_blocking(self._proc.stdout.fileno(), False)

    def _drain(self) -> None:
        stream = self._proc.stdout if self._proc is not None else None
        if stream is None or stream.closed:
            return
        fd = stream.fileno()
        while True:
            try:
                chunk = os.read(fd, 65536)
            except BlockingIOError:
                return
            except OSError:
                return
            if not chunk:
                return
            self._data += chunk

    def done(self) -> bool:
        if self._proc is None:
            return True
        self._drain()
        if self._proc.poll() is None:
            return False
        self._drain()
        return True

    @property
    def exitcode(self) -> Optional[int]:
        return self._proc.returncode if self._proc is not None else None

    def terminate(self) -> None:
        if self._proc is not None and self._proc.poll() is None:
            self._proc.terminate()

    def kill(self) -> None:
        if self._proc is not None and self._proc.poll() is None:
            self._proc.kill()
        if self._proc is not None:
            try:
                self._proc.wait(1.0)
            except subprocess.TimeoutExpired:
                logger.warning("Worker %d did not exit after SIGKILL", self.index)

    def close(self) -> None:
        if self._proc is not None and self._proc.stdout is not None and not self._proc.stdout.closed:
            self._proc.stdout.close()
        if self._task_file is not None:
            try:
                os.unlink(self._task_file)
            except FileNotFoundError:
                pass
            self._task_file = None


def make_handle(driver: str, task: WorkerTask) -> WorkerHandle:
    if driver == DRIVER_FORK:
        return ForkWorker(task)
    if driver == DRIVER_PROCESS:
        return ProcessWorker(task)
    raise ValueError(f"No worker handle for driver {driver!r}")
