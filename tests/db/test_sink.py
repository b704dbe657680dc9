# tests/db/test_sink.py
import pickle
import sqlite3

import pytest

from sheetflow.config import UpsertConfig
from sheetflow.db.sink import SqliteSinkFactory, quote_identifier, write_batch
from sheetflow.errors import PersistenceError

from conftest import table_rows


@pytest.fixture
def relational_db(tmp_path):
    db = tmp_path / "rel.db"
    conn = sqlite3.connect(str(db))
    conn.executescript(
        """
        CREATE TABLE teams (id INTEGER PRIMARY KEY, name TEXT);
        CREATE TABLE members (
            id INTEGER PRIMARY KEY,
            team_id INTEGER REFERENCES teams(id),
            email TEXT
        );
        CREATE TABLE audit (email TEXT);
        """
    )
    conn.commit()
    conn.close()
    return db


def test_quote_identifier():
    assert quote_identifier("name") == '"name"'
    assert quote_identifier('we"ird') == '"we""ird"'


def test_factory_is_picklable(users_db):
    assert pickle.loads(pickle.dumps(users_db)) == users_db


def test_insert_and_count(users_db):
    with users_db.connect() as sink:
        assert sink.insert([{"name": "A", "email": "a@x"}, {"email": "b@x"}]) == 2
        assert sink.insert([]) == 0
        assert sink.count() == 2

    assert table_rows(users_db, "SELECT name, email FROM users ORDER BY id") == [("A", "a@x"), (None, "b@x")]


def test_failed_batch_is_rolled_back_whole(users_db):
    with users_db.connect() as sink:
        sink.insert([{"name": "A", "email": "a@x"}])
        with pytest.raises(PersistenceError):
            sink.insert([{"name": "B", "email": "b@x"}, {"name": "dup", "email": "a@x"}])
        assert sink.count() == 1


def test_upsert_is_idempotent(users_db):
    rows = [{"name": "A", "email": "a@x"}, {"name": "B", "email": "b@x"}]
    upsert = UpsertConfig("email")
    with users_db.connect() as sink:
        write_batch(sink, rows, upsert)
        write_batch(sink, rows, upsert)
        assert sink.count() == 2

        write_batch(sink, [{"name": "A2", "email": "a@x"}], upsert)

    assert table_rows(users_db, "SELECT name FROM users ORDER BY email") == [("A2",), ("B",)]


def test_upsert_limited_update_columns(users_db):
    with users_db.connect() as sink:
        sink.insert([{"name": "A", "email": "a@x"}])
        sink.upsert([{"name": "changed", "email": "a@x"}], ["email"], update_columns=[])

    assert table_rows(users_db, "SELECT name FROM users") == [("A",)]


def test_upsert_requires_key_in_records(users_db):
    with users_db.connect() as sink:
        with pytest.raises(PersistenceError, match="email"):
            sink.upsert([{"name": "A"}], ["email"])


def test_missing_table_raises_persistence_error(tmp_path):
    sink = SqliteSinkFactory(str(tmp_path / "x.db"), "nope").connect()
    try:
        with pytest.raises(PersistenceError):
            sink.insert([{"a": 1}])
        with pytest.raises(PersistenceError):
            sink.count()
    finally:
        sink.close()


def test_relaxed_foreign_keys_restored(relational_db):
    factory = SqliteSinkFactory(str(relational_db), "members", disable_foreign_keys=True)
    with factory.connect() as sink:
        assert sink.foreign_keys_enabled()
        sink.insert([{"team_id": 99, "email": "orphan@x"}])
        assert sink.foreign_keys_enabled()
        assert sink.count() == 1


def test_foreign_keys_enforced_without_relaxed_mode(relational_db):
    factory = SqliteSinkFactory(str(relational_db), "members")
    with factory.connect() as sink:
        with pytest.raises(PersistenceError):
            sink.insert([{"team_id": 99, "email": "orphan@x"}])


def test_relaxed_restores_state_on_error(relational_db):
    factory = SqliteSinkFactory(str(relational_db), "members", disable_foreign_keys=True, disable_triggers=True)
    with factory.connect() as sink:
        with pytest.raises(RuntimeError):
            with sink.relaxed():
                assert not sink.foreign_keys_enabled()
                assert not sink.triggers_enabled()
                with sink.relaxed():
                    pass
                assert not sink.foreign_keys_enabled()
                raise RuntimeError("stop")
        assert sink.foreign_keys_enabled()
        assert sink.triggers_enabled()


def test_disabled_triggers_skip_guarded_trigger(relational_db):
    factory = SqliteSinkFactory(str(relational_db), "members", disable_triggers=True)
    with factory.connect() as sink:
        sink.connection.execute("PRAGMA trusted_schema = ON")
        sink.connection.execute(
            "CREATE TRIGGER members_audit AFTER INSERT ON members "
            "WHEN sheetflow_triggers_enabled() "
            "BEGIN INSERT INTO audit (email) VALUES (NEW.email); END"
        )
        sink.insert([{"email": "quiet@x"}])
        sink.connection.execute("INSERT INTO members (email) VALUES ('loud@x')")

    conn = sqlite3.connect(str(relational_db))
    try:
        assert conn.execute("SELECT email FROM audit").fetchall() == [("loud@x",)]
    finally:
        conn.close()


def test_transaction_keeps_good_batches_when_one_fails(users_db):
    with users_db.connect() as sink:
        with sink.transaction():
            sink.insert([{"email": "a@x"}])
            with pytest.raises(PersistenceError):
                sink.insert([{"email": "b@x"}, {"email": "a@x"}])
            sink.insert([{"email": "c@x"}])

    assert table_rows(users_db, "SELECT email FROM users ORDER BY email") == [("a@x",), ("c@x",)]


def test_transaction_rolls_back_on_exception(users_db):
    with users_db.connect() as sink:
        with pytest.raises(ValueError):
            with sink.transaction():
                sink.insert([{"email": "a@x"}])
                raise ValueError("abort")
        assert sink.count() == 0


def test_iter_rows_streams_in_order(users_db):
    with users_db.connect() as sink:
        sink.insert([{"name": n, "email": f"{n}@x"} for n in "cab"])
        rows = list(sink.iter_rows(["name"], chunk_size=2, order_by="name"))
    assert rows == [{"name": "a"}, {"name": "b"}, {"name": "c"}]
