"""
Logging for the 'isoenvelope' namespace.

Modules log through ``logging.getLogger(__name__)`` and stay silent until
``setup_logging`` attaches handlers. Only handlers installed here are replaced
on a repeated call; handlers added by the host application are left alone.
"""
import logging
import sys
from typing import Optional, TextIO

LOGGER_NAME = "isoenvelope"
DEFAULT_FORMAT = "%(levelname)s %(name)s: %(message)s"

_OWNED = "_isoenvelope_handler"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
    fmt: str = DEFAULT_FORMAT,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configures the package logger.

    Args:
        level: Logging level for the logger and its handlers.
        log_file: Optional path; records are appended to it.
        stream: Console stream, stderr by default.
        fmt: Record format shared by every installed handler.
        propagate: Whether records also reach the root logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = propagate

    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt)
    handlers = [logging.StreamHandler(stream if stream is not None else sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _OWNED, True)
        logger.addHandler(handler)

    logger.debug("Logging initialized at %s.", logging.getLevelName(level))
    return logger
