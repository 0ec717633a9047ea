"""Logging setup shared by every module.

Modules obtain their logger with ``logger = setup_logger(__name__)``. The
returned logger understands ``error_trace()``, which logs at ERROR level and
attaches the active traceback.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

from bookbinder.config import env

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CustomLogger(logging.Logger):
    """Logger with a helper for logging errors together with their traceback."""

    def error_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self.error(msg, *args, **kwargs)


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def setup_logger(name: str) -> CustomLogger:
    """Return a configured logger for `name`.

    Handlers are attached once per logger name, so calling this repeatedly
    (e.g. on module reload) does not duplicate output.
    """
    logging.setLoggerClass(CustomLogger)
    try:
        logger = logging.getLogger(name)
    finally:
        logging.setLoggerClass(logging.Logger)

    if not isinstance(logger, CustomLogger):
        # Logger existed before our class was installed; upgrade it in place
        logger.__class__ = CustomLogger

    if logger.handlers:
        return logger  # type: ignore[return-value]

    logger.setLevel(_resolve_level(env.LOG_LEVEL))
    logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if env.ENABLE_LOGGING:
        env.LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            env.LOG_DIR / env.LOG_FILE_NAME,
            maxBytes=env.LOG_MAX_BYTES,
            backupCount=env.LOG_BACKUP_COUNT,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger  # type: ignore[return-value]
