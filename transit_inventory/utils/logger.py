"""Process-wide logging setup for the inventory engine."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from transit_inventory.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install one stdout handler with ``LOG_FORMAT`` at ``LOG_LEVEL``.

    Only the first call has any effect. Message bodies are free text; callers
    append their own ``| key=value`` fields.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stdout)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
