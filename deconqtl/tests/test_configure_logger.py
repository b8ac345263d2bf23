import logging

import pytest

from deconqtl.configure_logger import LogLevel, configure_logger


def test_log_level_from_string():
    assert LogLevel.from_string("debug") == logging.DEBUG
    assert LogLevel.from_string("WARNING") == logging.WARNING
    assert LogLevel.to_string(logging.ERROR) == "ERROR"
    with pytest.raises(ValueError, match="Invalid log level"):
        LogLevel.from_string("verbose")


def test_configure_console_logger_replaces_handlers():
    logger = configure_logger("deconqtl_test_console", level=logging.DEBUG)
    logger = configure_logger("deconqtl_test_console", level=logging.DEBUG)

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.StreamHandler)


def test_configure_file_logger(tmp_path):
    log_file = tmp_path / "deconqtl.log"
    logger = configure_logger(
        "deconqtl_test_file", handler_type="file", log_file=str(log_file)
    )

    logger.info("fitting rs123")
    logger.handlers[0].flush()

    assert "INFO - " in log_file.read_text()
    assert "fitting rs123" in log_file.read_text()
    logger.handlers[0].close()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"handler_type": "file"},
        {"handler_type": "syslog"},
        {"level": 15},
    ],
)
def test_configure_logger_invalid(kwargs):
    with pytest.raises(ValueError):
        configure_logger("deconqtl_test_invalid", **kwargs)
