"""Logging setup shared by the call CLI and the signaling relay."""

import logging
import sys
from typing import Dict, List, Optional

from .config import settings

DEFAULT_FORMAT = '%(asctime)s.%(msecs)03d - %(levelname)s - %(name)s:%(funcName)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%H:%M:%S'

# aiortc/aioice log every STUN transaction and RTP packet at DEBUG
LIBRARY_LEVELS: Dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.WARNING,
    "aiohttp.access": logging.WARNING,
    "aiortc": logging.INFO,
    "aioice": logging.WARNING,
    "av": logging.WARNING,
    "libav": logging.ERROR,
}


def setup_logging(
    level: str = "DEBUG",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure the root logger.

    Args:
        level: level for the ``tutoring_rtc`` loggers (DEBUG, INFO, ...)
        format_string: custom record format
        log_file: also write DEBUG-and-up records to this file
    """
    formatter = logging.Formatter(format_string or DEFAULT_FORMAT, datefmt=DATE_FORMAT)
    handlers = _create_handlers(formatter, log_file)

    # replaces handlers installed by an earlier call
    logging.basicConfig(level=logging.INFO, handlers=handlers, force=True)

    for name, lib_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(lib_level)
    logging.getLogger("tutoring_rtc").setLevel(getattr(logging, level.upper(), logging.DEBUG))


def _create_handlers(formatter: logging.Formatter, log_file: Optional[str] = None) -> List[logging.Handler]:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [console_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    return handlers


def get_logger(name: str) -> logging.Logger:
    """Logger for a module of this package (pass ``__name__``)."""
    return logging.getLogger(name)


def setup_default_logging() -> None:
    """Configure logging from the global settings."""
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
    )
