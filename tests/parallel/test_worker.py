# tests/parallel/test_worker.py
from sheetflow.config import UpsertConfig
from sheetflow.mapping import MapperRef
from sheetflow.validation import DEFAULT_MESSAGE, Validator
from sheetflow.parallel.types import WorkerAssignment, WorkerResult, WorkerTask
from sheetflow.parallel.worker import run_worker

from conftest import RecordingFactory, RecordingSink, csv_text


def tag_row(record):
    if record["name"] == "User4":
        return None
    return {**record, "tagged": True}


def _task(path, index, workers, factory, **kwargs):
    return WorkerTask(
        assignment=WorkerAssignment(index, workers, str(path)),
        sink=factory,
        headers=["name", "email"],
        **kwargs,
    )


def test_workers_receive_round_robin_rows(write_csv):
    path = write_csv(csv_text(10))
    received = {}
    for index in range(3):
        factory = RecordingFactory()
        result = run_worker(_task(path, index, 3, factory, batch_size=2))
        received[index] = [int(r["name"][4:]) for r in factory.sink.rows]
        assert result.total == result.success == len(received[index])
        assert factory.sink.closed

    assert received == {0: [0, 3, 6, 9], 1: [1, 4, 7], 2: [2, 5, 8]}


def test_mapper_failures_and_skips(write_csv):
    def mapper(record):
        if record["name"] == "User2":
            raise ValueError("bad")
        if record["name"] == "User1":
            return None
        return record

    path = write_csv(csv_text(4))
    factory = RecordingFactory()
    result = run_worker(_task(path, 0, 1, factory, mapper=mapper))
    assert result == WorkerResult(total=4, success=2, failed=1)


def test_mapper_ref_is_resolved_in_worker(write_csv):
    path = write_csv(csv_text(6))
    factory = RecordingFactory()
    result = run_worker(_task(path, 1, 2, factory, mapper=MapperRef("test_worker:tag_row")))

    assert result == WorkerResult(total=3, success=3, failed=0)
    assert all(r["tagged"] for r in factory.sink.rows)


def test_failed_batch_counts_as_failed(write_csv):
    path = write_csv(csv_text(5))
    factory = RecordingFactory(RecordingSink(fail_on_batch=1))
    result = run_worker(_task(path, 0, 1, factory, batch_size=3, upsert=UpsertConfig("email")))
    assert result == WorkerResult(total=5, success=2, failed=3)


def test_worker_name():
    task = _task("x.csv", 2, 4, RecordingFactory())
    assert task.name == "sheetflow:worker-2"
    assert task.path.name == "x.csv"


def _break_email(record):
    if record["name"] in ("User3", "User5"):
        return {**record, "email": "not-an-email"}
    return record


def test_invalid_rows_are_skipped_when_configured(write_csv):
    path = write_csv(csv_text(6))
    factory = RecordingFactory()
    task = _task(
        path, 1, 2, factory,
        mapper=_break_email,
        validator=Validator({"email": "required|email"}),
        skip_invalid_rows=True,
    )
    result = run_worker(task)

    assert result == WorkerResult(total=3, success=1, failed=0, skipped=2)
    assert [r["name"] for r in factory.sink.rows] == ["User1"]


def test_invalid_row_ends_worker_without_writing_its_chunk(write_csv):
    path = write_csv(csv_text(6))
    factory = RecordingFactory()
    task = _task(
        path, 1, 2, factory,
        mapper=_break_email,
        validator=Validator({"email": "required|email"}),
        chunk_size=1,
    )
    result = run_worker(task)

    # ordinals 1 and 3 are owned; ordinal 3 sits on file row 5
    assert result.invalid_row == 5
    assert result.invalid_errors == (DEFAULT_MESSAGE.format(field="email", rule="email"),)
    assert (result.total, result.success) == (2, 1)
    assert [r["name"] for r in factory.sink.rows] == ["User1"]


def test_max_errors_stops_the_worker(write_csv):
    def always_fail(record):
        raise ValueError("nope")

    path = write_csv(csv_text(10))
    factory = RecordingFactory()
    result = run_worker(_task(path, 0, 1, factory, mapper=always_fail, max_errors=3, chunk_size=2))

    assert result.stopped
    assert result.failed == 3
    assert result.total == 4
    assert factory.sink.rows == []


def test_transactions_wrap_each_chunk_in_worker(write_csv):
    path = write_csv(csv_text(5))
    factory = RecordingFactory()
    run_worker(_task(path, 0, 1, factory, chunk_size=2, use_transactions=True))
    assert factory.sink.transactions == 3
