# tests/io/test_writers.py
import datetime as dt

import openpyxl
import pytest

from sheetflow.config import CsvDialect, ExportConfig
from sheetflow.errors import UnsupportedFormatError
from sheetflow.io.readers import open_row_source
from sheetflow.io.writers import CsvWriter, XlsxWriter, format_cell, open_writer, sheet_title, writer_kind


def test_format_cell():
    assert format_cell(None) == ""
    assert format_cell(True) == "true"
    assert format_cell(False) == "false"
    assert format_cell(dt.datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
    assert format_cell(dt.date(2024, 1, 2), "%d/%m/%Y") == "02/01/2024"
    assert format_cell(3.5) == "3.5"


def test_sheet_title_strips_invalid_characters_and_truncates():
    assert sheet_title("a/b:c[d]") == "abcd"
    assert sheet_title("") == "Sheet1"
    assert len(sheet_title("x" * 40)) == 31


def test_writer_kind():
    assert writer_kind("out.CSV") == "csv"
    assert writer_kind("out.tsv") == "tsv"
    assert writer_kind("out.xlsx") == "xlsx"
    with pytest.raises(UnsupportedFormatError):
        writer_kind("out.pdf")


def test_csv_writer_rows_and_header(tmp_path):
    path = tmp_path / "out.csv"
    with CsvWriter(path) as writer:
        written = writer.write_sheet("ignored", ["Name", "Active"], [["a, b", True], [None, False]])

    assert written == 2
    assert path.read_text(encoding="utf-8").splitlines() == [
        "Name,Active",
        '"a, b",true',
        ",false",
    ]


def test_csv_writer_leaves_backslashes_alone(tmp_path):
    path = tmp_path / "out.csv"
    values = [r"C:\temp", 'say "hi"', "trailing\\"]
    with CsvWriter(path) as writer:
        writer.write_sheet(None, ["p"], [[v] for v in values])

    assert path.read_text(encoding="utf-8").splitlines() == [
        "p",
        r"C:\temp",
        '"say ""hi"""',
        "trailing\\",
    ]
    with open_row_source(path) as source:
        assert [r["p"] for _, r in source.rows()] == values


def test_csv_writer_bom_and_delimiter(tmp_path):
    path = tmp_path / "out.csv"
    with CsvWriter(path, dialect=CsvDialect(delimiter=";"), include_bom=True) as writer:
        writer.write_sheet(None, ["a", "b"], [[1, 2]])

    raw = path.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    assert raw[3:].decode("utf-8").splitlines() == ["a;b", "1;2"]


def test_csv_writer_rejects_second_sheet(tmp_path):
    with CsvWriter(tmp_path / "out.csv") as writer:
        writer.write_sheet(None, None, [])
        with pytest.raises(UnsupportedFormatError):
            writer.write_sheet(None, None, [])


def test_open_writer_tsv_uses_tab(tmp_path):
    path = tmp_path / "out.tsv"
    with open_writer(path, ExportConfig()) as writer:
        writer.write_sheet(None, ["a", "b"], [[1, 2]])
    assert path.read_text().splitlines() == ["a\tb", "1\t2"]


def test_xlsx_writer_multiple_sheets_unique_titles(tmp_path):
    path = tmp_path / "out.xlsx"
    with XlsxWriter(path) as writer:
        assert writer.write_sheet("Users", ["Id"], [[1], [2]]) == 2
        writer.write_sheet("Users", ["Id"], [[3]])

    wb = openpyxl.load_workbook(path)
    assert wb.sheetnames == ["Users", "Users (2)"]
    assert [r for r in wb["Users"].iter_rows(values_only=True)] == [("Id",), (1,), (2,)]


def test_xlsx_writer_without_sheets_still_saves(tmp_path):
    path = tmp_path / "empty.xlsx"
    XlsxWriter(path).close()
    assert openpyxl.load_workbook(path).sheetnames == ["Sheet1"]
