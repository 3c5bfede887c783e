"""Shared project logger"""

import logging
import os
import sys
from typing import Optional


LOGGER_NAME = "subscription"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(level: Optional[str] = None) -> logging.Logger:
    """
    Configure and return the shared logger.

    The level comes from the argument, then the LOG_LEVEL environment
    variable, then INFO. Calling this twice does not add a second handler.
    """
    log = logging.getLogger(LOGGER_NAME)
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    log.setLevel(getattr(logging, level_name, logging.INFO))

    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)

    return log


logger = setup_logger()
