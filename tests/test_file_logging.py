"""Tests for logging setup."""

import logging

import pytest

from voice_todo.main import configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_writes_log_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "voice-todo.log"
    configure_logging(verbose=True, log_file=log_file)

    logging.getLogger("voice_todo.core.speech.manager").info("[Speech] State: IDLE -> STARTING")
    for handler in restore_root_logger.handlers:
        handler.flush()

    assert log_file.exists()
    assert "[Speech] State: IDLE -> STARTING" in log_file.read_text(encoding="utf-8")


def test_configure_logging_defaults_to_warning(restore_root_logger):
    configure_logging(verbose=False)
    assert restore_root_logger.level == logging.WARNING
    assert not any(
        type(handler).__name__ == "RotatingFileHandler" for handler in restore_root_logger.handlers
    )
