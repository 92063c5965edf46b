# klamai/core/logger.py
"""
Application logger
"""
import logging
import sys

from klamai.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logger(name: str = "klamai") -> logging.Logger:
    """
    Configure and return the shared application logger.
    Safe to call more than once; handlers are attached only the first time.
    """
    log = logging.getLogger(name)
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)
    log.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    return log


logger = setup_logger()
