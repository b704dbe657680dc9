# tests/test_importer.py
import pytest

from sheetflow import EventHooks, ImportConfig, Importer, ParallelConfig, import_file
from sheetflow.errors import FileError, UnsupportedFormatError, ValidationError
from sheetflow.parallel import drivers

from conftest import csv_text, table_rows


def test_import_file_sequential(write_csv, users_db):
    report = import_file(write_csv(csv_text(4)), ImportConfig(sink=users_db))
    assert report.to_dict()["success_rows"] == 4
    assert table_rows(users_db, "SELECT COUNT(*) FROM users") == [(4,)]


def test_unsupported_extension_raises_before_reading(tmp_path, recording_factory):
    with pytest.raises(UnsupportedFormatError):
        Importer(ImportConfig(sink=recording_factory)).run(tmp_path / "data.parquet")
    assert recording_factory.connects == 0


def test_missing_file_raises(tmp_path, recording_factory):
    with pytest.raises(FileError):
        Importer(ImportConfig(sink=recording_factory)).run(tmp_path / "missing.csv")


def test_import_hooks_fire_around_run(write_csv, recording_factory):
    calls = []
    hooks = EventHooks({
        "before_import": lambda path: calls.append(("before", path)),
        "after_import": lambda report: calls.append(("after", report.success_rows)),
    })
    path = write_csv(csv_text(2))

    Importer(ImportConfig(sink=recording_factory, events=hooks)).run(path)

    assert calls == [("before", str(path)), ("after", 2)]


def test_single_worker_stays_sequential(write_csv, recording_factory):
    config = ImportConfig(sink=recording_factory, parallel=ParallelConfig(workers=1))
    report = Importer(config).run(write_csv(csv_text(3)))
    assert report.success_rows == 3
    assert recording_factory.connects == 1


@pytest.mark.skipif(not drivers.fork_supported(), reason="fork start method unavailable")
def test_parallel_import(write_csv, users_db):
    config = ImportConfig(sink=users_db, parallel=ParallelConfig(workers=3))
    report = Importer(config).run(write_csv(csv_text(30)))

    assert (report.total_rows, report.success_rows) == (30, 30)
    assert table_rows(users_db, "SELECT COUNT(*) FROM users") == [(30,)]


def test_cancel_without_run_is_harmless(recording_factory):
    Importer(ImportConfig(sink=recording_factory)).cancel()


def _recording_hooks(calls):
    return EventHooks({
        "on_error": lambda row, exc: calls.append(("error", row, type(exc).__name__)),
        "after_import": lambda report: calls.append(("after",)),
    })


def test_fatal_validation_error_fires_on_error(write_csv, recording_factory):
    calls = []
    path = write_csv("name,email\nA,a@x.com\nB,not-an-email\n")
    config = ImportConfig(sink=recording_factory, rules={"email": "required|email"}, events=_recording_hooks(calls))

    with pytest.raises(ValidationError):
        Importer(config).run(path)

    assert calls == [("error", 3, "ValidationError")]


def test_unreadable_workbook_fires_on_error(tmp_path, recording_factory):
    calls = []
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip archive")
    config = ImportConfig(sink=recording_factory, events=_recording_hooks(calls))

    with pytest.raises(FileError):
        Importer(config).run(path)

    assert calls == [("error", None, "FileError")]
