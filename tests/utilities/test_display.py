# tests/utilities/test_display.py
import pytest

from sheetflow.utilities.display import format_bytes, truncate_path_to_fit


@pytest.mark.parametrize(
    "num, expected",
    [(0, "0 B"), (512, "512 B"), (1536, "1.50 KB"), (5 * 1024 ** 2, "5.00 MB"), (5 * 1024 ** 3, "5.00 GB")],
)
def test_format_bytes(num, expected):
    assert format_bytes(num) == expected


def test_truncate_path_to_fit():
    assert truncate_path_to_fit("/a/b.csv", "File: ", 40) == "/a/b.csv"
    out = truncate_path_to_fit("/" + "d" * 50 + "/b.csv", "File: ", 30)
    assert len("File: " + out) == 30
    assert out.startswith("...") and out.endswith("/b.csv")
    assert truncate_path_to_fit("/abc/def", "0123456789", 12) == "..."
