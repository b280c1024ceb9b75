'''
Application-wide logger. Every module does `from ..common.logger import log`.
'''
import logging
import sys

from .config import settings

def setup_logger(level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger('TF-backend')
    logger.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        '%(asctime)s - %(module)s - %(levelname)s\n - %(message)s'
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    return logger

log = setup_logger(settings.LOG_LEVEL)
