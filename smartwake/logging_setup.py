from __future__ import annotations

import os
import sys

from loguru import logger as _loguru_logger

_LOGGER = None

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "{level:<8} | {extra[tag]} | {message}"
)


def setup_logging():
    """
    Return the shared loguru logger, configuring a console sink on first use.

    The level comes from ``LOG_LEVEL`` (default ``INFO``) and the format from
    ``LOG_FORMAT``. Modules bind a tag per call site::

        TAG = __name__
        logger = setup_logging()
        logger.bind(tag=TAG).info("...")
    """
    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER

    level = os.environ.get("LOG_LEVEL", "INFO")
    log_format = os.environ.get("LOG_FORMAT", DEFAULT_FORMAT)

    _loguru_logger.remove()
    _loguru_logger.configure(extra={"tag": "smartwake"})
    _loguru_logger.add(
        sys.stdout,
        format=log_format,
        level=level,
        enqueue=True,
    )
    _LOGGER = _loguru_logger
    return _LOGGER
