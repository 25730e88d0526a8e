import logging
from unittest.mock import patch

import pytest

from langsync.logging_config import TqdmLoggingHandler, setup_logger


@pytest.fixture
def restore_logger():
    yield
    logger = logging.getLogger("langsync")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def test_file_and_console_handlers(tmp_path, restore_logger):
    log_file = tmp_path / "logs" / "langsync.log"

    logger = setup_logger("debug", str(log_file), True)
    logging.getLogger("langsync.localize").debug("Processing 'locales/en.json'")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    assert [type(handler) for handler in logger.handlers] == [logging.FileHandler, TqdmLoggingHandler]
    line = log_file.read_text(encoding="utf-8")
    assert " - DEBUG - langsync.localize - Processing 'locales/en.json'" in line


def test_repeated_setup_does_not_duplicate_handlers(restore_logger):
    setup_logger("INFO", None, True)
    logger = setup_logger("INFO", None, True)
    assert len(logger.handlers) == 1


def test_unknown_level_falls_back_to_info(restore_logger):
    assert setup_logger("chatty", None, False).level == logging.INFO


def test_http_client_loggers_are_quieted(restore_logger):
    setup_logger("DEBUG", None, False)
    assert logging.getLogger("httpx").level == logging.WARNING
    setup_logger("ERROR", None, False)
    assert logging.getLogger("openai").level == logging.ERROR


def test_tqdm_handler_writes_through_tqdm():
    handler = TqdmLoggingHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    record = logging.LogRecord("langsync", logging.INFO, __file__, 1, "hello", None, None)
    with patch("langsync.logging_config.tqdm.write") as mock_write:
        handler.emit(record)
    assert mock_write.call_args.args == ("hello",)
