"""Logging for the identity core; JSON records by default."""

import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

from .context import get_str

_handler: Optional[logging.Handler] = None


def _get_handler() -> logging.Handler:
    global _handler
    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        if get_str('LOGFORMAT', 'json') == 'json':
            formatter: logging.Formatter = jsonlogger.JsonFormatter(
                '%(asctime)s %(levelname)s %(name)s %(message)s',
                rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(levelname)s: %(name)s - %(message)s'
            )
        _handler.setFormatter(formatter)
    return _handler


def getLogger(name: str) -> logging.Logger:
    """Get a logger attached to the shared handler."""
    logger = logging.getLogger(name)
    handler = _get_handler()
    if handler not in logger.handlers:
        logger.addHandler(handler)
    logger.setLevel(get_str('LOGLEVEL', 'INFO').upper())   # type: ignore
    logger.propagate = False
    return logger
