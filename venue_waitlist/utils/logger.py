"""Process-wide logging setup for the waitlist service."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from venue_waitlist.utils.config import Settings, get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Chatty third-party loggers kept at WARNING unless the service itself runs at DEBUG.
_QUIET_LOGGERS = ("urllib3", "httpx", "multipart")

_configured = False


def _resolve_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: Optional[Settings] = None, level: Optional[str] = None) -> None:
    """Install the stdout handler once; later calls are no-ops."""
    global _configured
    if _configured:
        return

    resolved = settings or get_settings()
    numeric_level = _resolve_level(level or resolved.log_level)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, stream=sys.stdout)
    if numeric_level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
