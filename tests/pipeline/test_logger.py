# tests/pipeline/test_logger.py
import logging
from logging import FileHandler, StreamHandler
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from sheetflow.pipeline.logger import setup_logger

pytestmark = pytest.mark.usefixtures("clean_root_handlers")


@pytest.fixture()
def clean_root_handlers():
    """Start each test with a clean root logger; restore afterwards."""
    root = logging.getLogger()
    prev = list(root.handlers)
    prev_level = root.level
    for h in prev:
        root.removeHandler(h)
    try:
        yield
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in prev:
            root.addHandler(h)
        root.setLevel(prev_level)


def _handler_types():
    return {type(h) for h in logging.getLogger().handlers}


def test_creates_log_file_in_directory(tmp_path: Path):
    log_path = setup_logger(tmp_path, force=True)

    assert log_path.parent == tmp_path
    assert log_path.name.startswith("sheetflow_")
    assert log_path.suffix == ".log"

    logging.getLogger("sheetflow.test").info("hello world")
    text = log_path.read_text(encoding="utf-8")
    assert "Logging to:" in text
    assert "sheetflow.test: hello world" in text


def test_uses_parent_dir_of_import_file(tmp_path: Path):
    source = tmp_path / "users.csv"
    source.write_text("name\n")

    log_path = setup_logger(source, filename_prefix="users", force=True)

    assert log_path.parent == tmp_path
    assert log_path.name.startswith("users_")


def test_console_and_rotation_handlers(tmp_path: Path):
    setup_logger(tmp_path, console=True, rotate=True, force=True)
    types = _handler_types()
    assert RotatingFileHandler in types
    assert StreamHandler in types


def test_plain_file_handler_by_default(tmp_path: Path):
    setup_logger(tmp_path, force=True)
    assert _handler_types() == {FileHandler}


def test_force_replaces_existing_handlers(tmp_path: Path):
    setup_logger(tmp_path / "a", force=True)
    setup_logger(tmp_path / "b", force=True)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert Path(handlers[0].baseFilename).parent == tmp_path / "b"


def test_level_is_applied(tmp_path: Path):
    log_path = setup_logger(tmp_path, level=logging.WARNING, force=True)
    logging.getLogger("sheetflow.test").info("quiet")
    logging.getLogger("sheetflow.test").warning("loud")
    text = log_path.read_text(encoding="utf-8")
    assert "quiet" not in text
    assert "loud" in text


def test_level_by_name(tmp_path: Path):
    log_path = setup_logger(tmp_path, level="debug", force=True)
    logging.getLogger("sheetflow.test").debug("details")
    assert "details" in log_path.read_text(encoding="utf-8")

    with pytest.raises(ValueError):
        setup_logger(tmp_path, level="chatty", force=True)


def test_named_logger_leaves_root_alone(tmp_path: Path):
    named = logging.getLogger("sheetflow")
    try:
        log_path = setup_logger(tmp_path, logger_name="sheetflow", force=True)
        assert logging.getLogger().handlers == [] or FileHandler not in _handler_types()
        logging.getLogger("sheetflow.io").info("reading")
        assert "sheetflow.io: reading" in log_path.read_text(encoding="utf-8")
    finally:
        for h in list(named.handlers):
            named.removeHandler(h)
            h.close()
        named.setLevel(logging.NOTSET)
