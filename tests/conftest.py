# tests/conftest.py
from __future__ import annotations

import sqlite3
from contextlib import contextmanager

import pytest

from sheetflow.db.sink import SqliteSinkFactory


class RecordingSink:
    """In-memory BatchSink double that remembers every batch."""

    def __init__(self, fail_on_batch=None):
        self.batches = []
        self.upserts = []
        self.transactions = 0
        self.closed = False
        self.fail_on_batch = fail_on_batch

    def insert(self, records):
        from sheetflow.errors import PersistenceError

        self.batches.append(list(records))
        if self.fail_on_batch is not None and len(self.batches) == self.fail_on_batch:
            raise PersistenceError("boom")
        return len(records)

    def upsert(self, records, unique_by, update_columns=None):
        self.upserts.append((tuple(unique_by), update_columns))
        return self.insert(records)

    def count(self):
        return sum(len(b) for b in self.batches)

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield

    def close(self):
        self.closed = True

    @property
    def rows(self):
        return [r for batch in self.batches for r in batch]


class RecordingFactory:
    def __init__(self, sink=None):
        self.sink = sink or RecordingSink()
        self.connects = 0

    def connect(self):
        self.connects += 1
        return self.sink


def csv_text(n, header="name,email"):
    lines = [header] + [f"User{i},user{i}@example.com" for i in range(n)]
    return "\n".join(lines) + "\n"


@pytest.fixture
def write_csv(tmp_path):
    def _write(text, name="data.csv"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def recording_factory():
    return RecordingFactory()


@pytest.fixture
def users_db(tmp_path):
    """SQLite database with a ``users`` table keyed by unique email."""
    db = tmp_path / "users.db"
    conn = sqlite3.connect(str(db))
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            "CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, email TEXT UNIQUE)"
        )
        conn.commit()
    finally:
        conn.close()
    return SqliteSinkFactory(str(db), "users")


def table_rows(factory, sql):
    conn = sqlite3.connect(str(factory.db_path))
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()
