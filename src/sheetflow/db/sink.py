"""Batch persistence sinks.

``SqliteSinkFactory`` is the picklable description handed to workers;
each worker calls ``connect()`` to get its own ``SqliteSink``. A sink
connection is never shared across processes.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Union

from ..config import UpsertConfig
from ..errors import PersistenceError

__all__ = [
    "BatchSink",
    "SinkFactory",
    "SqliteSink",
    "SqliteSinkFactory",
    "write_batch",
    "quote_identifier",
    "TRIGGERS_ENABLED_FUNCTION",
]

logger = logging.getLogger(__name__)

# SQL function triggers can test in their WHEN clause to honour relaxed mode
TRIGGERS_ENABLED_FUNCTION = "sheetflow_triggers_enabled"

Record = Dict[Any, Any]


class BatchSink(Protocol):
    def insert(self, records: Sequence[Record]) -> int: ...

    def upsert(
        self,
        records: Sequence[Record],
        unique_by: Sequence[str],
        update_columns: Optional[Sequence[str]] = None,
    ) -> int: ...

    def count(self) -> int: ...

    def transaction(self): ...

    def close(self) -> None: ...


class SinkFactory(Protocol):
    def connect(self) -> BatchSink: ...


def quote_identifier(name: Any) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def _columns_of(records: Sequence[Record]) -> List[Any]:
    """Ordered union of record keys, first-seen order."""
    seen: Dict[Any, None] = {}
    for record in records:
        for key in record:
            if key not in seen:
                seen[key] = None
    return list(seen)


@dataclass(frozen=True)
class SqliteSinkFactory:
    """Picklable connection recipe for a SQLite table.

    Args:
        db_path: SQLite database file
        table: Target table (must exist)
        disable_foreign_keys: Turn ``PRAGMA foreign_keys`` off around writes
        disable_triggers: Report triggers as disabled around writes
        enforce_foreign_keys: Turn foreign key enforcement on at connect
        wal: Put the database in WAL mode so progress sampling does not
            block concurrent writers
        timeout: Seconds to wait on a locked database
    """
    db_path: Union[str, Path]
    table: str
    disable_foreign_keys: bool = False
    disable_triggers: bool = False
    enforce_foreign_keys: bool = True
    wal: bool = True
    timeout: float = 30.0

    def connect(self) -> "SqliteSink":
        return SqliteSink(
            self.db_path,
            self.table,
            disable_foreign_keys=self.disable_foreign_keys,
            disable_triggers=self.disable_triggers,
            enforce_foreign_keys=self.enforce_foreign_keys,
            wal=self.wal,
            timeout=self.timeout,
        )


class SqliteSink:
    """Insert/upsert batches into one SQLite table.

    Each batch is atomic: it runs in its own transaction, or under a
    savepoint when the caller holds ``transaction()``.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        table: str,
        *,
        disable_foreign_keys: bool = False,
        disable_triggers: bool = False,
        enforce_foreign_keys: bool = True,
        wal: bool = True,
        timeout: float = 30.0,
    ):
        self.db_path = Path(db_path)
        self.table = table
        self.disable_foreign_keys = disable_foreign_keys
        self.disable_triggers = disable_triggers
        self._triggers_enabled = True
        self._relaxed_depth = 0
        self._in_transaction = False

        try:
            self._conn = sqlite3.connect(str(self.db_path), timeout=timeout, isolation_level=None)
            self._conn.create_function(TRIGGERS_ENABLED_FUNCTION, 0, self._triggers_flag)
            if wal:
                self._conn.execute("PRAGMA journal_mode=WAL")
            if enforce_foreign_keys:
                self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            raise PersistenceError(f"Unable to connect to {self.db_path}: {exc}") from exc

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _triggers_flag(self) -> int:
        return 1 if self._triggers_enabled else 0

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def foreign_keys_enabled(self) -> bool:
        return bool(self._conn.execute("PRAGMA foreign_keys").fetchone()[0])

    def triggers_enabled(self) -> bool:
        return self._triggers_enabled

    # -- relaxed mode ------------------------------------------------------

    @contextmanager
    def relaxed(self) -> Iterator[None]:
        """Disable configured integrity checks; restore prior state on exit.

        Re-entrant: only the outermost block toggles connection state.
        """
        outermost = self._relaxed_depth == 0
        self._relaxed_depth += 1
        prior_fk: Optional[bool] = None
        prior_triggers = self._triggers_enabled
        try:
            if outermost and self.disable_foreign_keys:
                prior_fk = self.foreign_keys_enabled()
                self._conn.execute("PRAGMA foreign_keys = OFF")
            if outermost and self.disable_triggers:
                self._triggers_enabled = False
            yield
        finally:
            self._relaxed_depth -= 1
            if outermost:
                self._triggers_enabled = prior_triggers
                if prior_fk is not None:
                    self._conn.execute(f"PRAGMA foreign_keys = {'ON' if prior_fk else 'OFF'}")

    # -- transactions ------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Wrap several batches in one transaction.

        Relaxed mode is entered before BEGIN since SQLite ignores
        ``PRAGMA foreign_keys`` inside a transaction.
        """
        if self._in_transaction:
            yield
            return
        with self.relaxed():
            self._execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield
            except BaseException:
                self._in_transaction = False
                self._conn.rollback()
                raise
            self._in_transaction = False
            self._execute("COMMIT")

    def _execute(self, sql: str) -> None:
        try:
            self._conn.execute(sql)
        except sqlite3.Error as exc:
            raise PersistenceError(f"{sql} failed on {self.table}: {exc}") from exc

    def _run_batch(self, sql: str, params: List[tuple]) -> None:
        with self.relaxed():
            try:
                if self._in_transaction:
                    self._conn.execute("SAVEPOINT sheetflow_batch")
                    try:
                        self._conn.executemany(sql, params)
                    except sqlite3.Error:
                        self._conn.execute("ROLLBACK TO sheetflow_batch")
                        self._conn.execute("RELEASE sheetflow_batch")
                        raise
                    self._conn.execute("RELEASE sheetflow_batch")
                else:
                    self._conn.execute("BEGIN IMMEDIATE")
                    try:
                        self._conn.executemany(sql, params)
                    except sqlite3.Error:
                        self._conn.rollback()
                        raise
                    self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise PersistenceError(f"Batch write to {self.table} failed: {exc}") from exc

    # -- writes ------------------------------------------------------------

    def insert(self, records: Sequence[Record]) -> int:
        if not records:
            return 0
        columns = _columns_of(records)
        sql = self._insert_sql(columns)
        self._run_batch(sql, [tuple(r.get(c) for c in columns) for r in records])
        return len(records)

    def upsert(
        self,
        records: Sequence[Record],
        unique_by: Sequence[str],
        update_columns: Optional[Sequence[str]] = None,
    ) -> int:
        if not records:
            return 0
        if not unique_by:
            raise PersistenceError("upsert requires at least one unique_by column")
        columns = _columns_of(records)
        missing = [c for c in unique_by if c not in columns]
        if missing:
            raise PersistenceError(f"upsert key column(s) missing from records: {', '.join(map(str, missing))}")

        if update_columns is None:
            update = [c for c in columns if c not in unique_by]
        else:
            update = [c for c in update_columns if c in columns and c not in unique_by]

        conflict = ", ".join(quote_identifier(c) for c in unique_by)
        if update:
            assignments = ", ".join(
                f"{quote_identifier(c)} = excluded.{quote_identifier(c)}" for c in update
            )
            tail = f" ON CONFLICT ({conflict}) DO UPDATE SET {assignments}"
        else:
            tail = f" ON CONFLICT ({conflict}) DO NOTHING"

        sql = self._insert_sql(columns) + tail
        self._run_batch(sql, [tuple(r.get(c) for c in columns) for r in records])
        return len(records)

    def _insert_sql(self, columns: Sequence[Any]) -> str:
        cols = ", ".join(quote_identifier(c) for c in columns)
        marks = ", ".join("?" for _ in columns)
        return f"INSERT INTO {quote_identifier(self.table)} ({cols}) VALUES ({marks})"

    # -- reads -------------------------------------------------------------

    def count(self) -> int:
        try:
            row = self._conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(self.table)}").fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Unable to count rows in {self.table}: {exc}") from exc
        return int(row[0])

    def iter_rows(
        self,
        columns: Optional[Sequence[str]] = None,
        *,
        chunk_size: int = 1000,
        order_by: Optional[str] = None,
    ) -> Iterator[Record]:
        """Stream table rows as dicts, ``chunk_size`` rows per fetch."""
        cols = ", ".join(quote_identifier(c) for c in columns) if columns else "*"
        sql = f"SELECT {cols} FROM {quote_identifier(self.table)}"
        if order_by:
            sql += f" ORDER BY {quote_identifier(order_by)}"
        try:
            cursor = self._conn.execute(sql)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Unable to read {self.table}: {exc}") from exc
        names = [d[0] for d in cursor.description]
        try:
            while True:
                chunk = cursor.fetchmany(chunk_size)
                if not chunk:
                    break
                for row in chunk:
                    yield dict(zip(names, row))
        finally:
            cursor.close()

    def close(self) -> None:
        self._conn.close()


def write_batch(sink: BatchSink, records: Sequence[Record], upsert: Optional[UpsertConfig] = None) -> int:
    """Insert or upsert one batch, depending on ``upsert``."""
    if upsert is None:
        return sink.insert(records)
    return sink.upsert(records, upsert.unique_by, upsert.update_columns)
