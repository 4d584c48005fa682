"""Shared application logger"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(name: str = "storefront", level: str = None) -> logging.Logger:
    """Create the application logger, configured once per process."""
    log = logging.getLogger(name)
    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)
    log.setLevel((level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    return log


logger = setup_logger()
