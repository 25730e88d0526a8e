import logging
import os
import sys
from typing import List, Optional

from tqdm import tqdm

PACKAGE_LOGGER = "langsync"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

_NOISY_LOGGERS = ("openai", "httpx", "httpcore")


class TqdmLoggingHandler(logging.Handler):
    """Console handler that prints through ``tqdm.write`` so open progress bars stay intact."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=sys.stderr)
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def _file_handler(log_file_path: str) -> logging.Handler:
    parent = os.path.dirname(log_file_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    return logging.FileHandler(log_file_path, encoding='utf-8')


def setup_logger(log_level_str: str, log_file_path: Optional[str], log_to_console: bool) -> logging.Logger:
    """
    Configure the ``langsync`` package logger for one run.

    Every module logs through ``logging.getLogger(__name__)``, so the handlers
    installed here receive the records of the whole package. Calling this again
    replaces the previous handlers.

    Args:
        log_level_str: Level name such as 'INFO' or 'debug'; unknown names mean INFO.
        log_file_path: File to append to, or None for no file logging.
        log_to_console: Whether to echo records to stderr.

    Returns:
        The configured package logger.
    """
    level = getattr(logging, log_level_str.upper(), logging.INFO)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    handlers: List[logging.Handler] = []
    if log_file_path:
        handlers.append(_file_handler(log_file_path))
    if log_to_console:
        handlers.append(TqdmLoggingHandler())

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return logger
