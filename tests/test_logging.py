# tests/test_logging.py
import logging
import logging.handlers

import pytest
from config import settings

import utils.logging as logging_utils


@pytest.fixture
def restore_root_handlers():
    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    yield root_logger
    for handler in root_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler not in saved_handlers:
            handler.close()
    root_logger.handlers = saved_handlers
    root_logger.setLevel(saved_level)


def test_setup_logging_adds_file_and_console_handlers(
    tmp_path, monkeypatch, restore_root_handlers
):
    log_file = tmp_path / "run.log"
    monkeypatch.setattr(settings, "LOG_FILE", str(log_file))
    monkeypatch.setattr(settings, "ENABLE_RICH_PROGRESS", False)

    logging_utils.setup_logging()

    kinds = [type(h) for h in restore_root_handlers.handlers]
    assert kinds == [logging.handlers.RotatingFileHandler, logging.StreamHandler]
    assert log_file.exists()
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_survives_file_handler_error(monkeypatch, restore_root_handlers):
    def raise_handler(*_a, **_k):
        raise OSError("fail")

    monkeypatch.setattr(logging.handlers, "RotatingFileHandler", raise_handler)
    monkeypatch.setattr(settings, "LOG_FILE", "temp.log")
    monkeypatch.setattr(settings, "ENABLE_RICH_PROGRESS", False)

    logging_utils.setup_logging()

    assert [type(h) for h in restore_root_handlers.handlers] == [logging.StreamHandler]
