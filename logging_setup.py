"""Logging for the e-library API.

Route handlers, the engagement service and the stores all log through the
``elibrary`` logger; ``LOG_LEVEL`` picks its level. Lines look like
``[elibrary] 2026-10-19 12:00:00,000 INFO user=<id> book=<id> action=download``.
"""
import logging
import threading

import config

LOGGER_NAME = "elibrary"
LOG_FORMAT = "[elibrary] %(asctime)s %(levelname)s %(message)s"

_setup_lock = threading.Lock()
_configured = False


def _configure(logger: logging.Logger) -> None:
    logger.setLevel(getattr(logging, config.log_level_name(), logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    # uvicorn installs its own root handlers
    logger.propagate = False


def get_logger() -> logging.Logger:
    global _configured
    logger = logging.getLogger(LOGGER_NAME)
    if not _configured:
        with _setup_lock:
            if not _configured:
                _configure(logger)
                _configured = True
    return logger
