"""
log.py
------

Logging setup for the command line tool.  Console lines are coloured by
level with plain ANSI escape sequences (unless ``--no-color`` is given) and
can additionally be appended to a log file without colour codes.

Only the ``dirprobe`` logger is configured; the root logger is left alone so
embedding applications and test harnesses keep their own handlers.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional


COLOUR_MAP = {
    "DEBUG": "\033[90m",    # grey
    "INFO": "\033[94m",     # blue
    "WARNING": "\033[93m",  # yellow
    "ERROR": "\033[91m",    # red
    "CRITICAL": "\033[91m",
}
RESET = "\033[0m"

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] [%(component)s] %(message)s"


class ComponentFilter(logging.Filter):
    """Expose the last part of the logger name as ``%(component)s``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.component = record.name.rsplit(".", 1)[-1]
        return True


class ColourFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        prefix = COLOUR_MAP.get(record.levelname, "")
        return f"{prefix}{message}{RESET}" if prefix else message


def configure_logging(verbose: bool = False, *, no_color: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger("dirprobe")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    console = logging.StreamHandler(sys.stdout)
    fmt_cls = logging.Formatter if no_color or not sys.stdout.isatty() else ColourFormatter
    console.setFormatter(fmt_cls(PLAIN_FORMAT, datefmt="%H:%M:%S"))
    console.addFilter(ComponentFilter())
    logger.addHandler(console)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(logging.Formatter(PLAIN_FORMAT))
        fh.addFilter(ComponentFilter())
        logger.addHandler(fh)

    # aiohttp is chatty at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    return logger
