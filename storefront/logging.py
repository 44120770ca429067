"""Logging configuration utilities for the storefront package."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from storefront.config import get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER_NAME = "storefront"

logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Attach stream (and optional file) handlers to the package logger.

    The package only installs a ``NullHandler`` on import; host applications
    that want storefront output on stdout call this once during startup.
    Without ``level`` the configured ``STOREFRONT_LOG_LEVEL`` applies.
    """

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    resolved = level or get_settings().log_level
    logger.setLevel(getattr(logging, resolved.upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
