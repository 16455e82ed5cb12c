"""Logging setup for the booking engine.

Module loggers come from `get_logger`. Accept/reject/skip outcomes of
capacity checks additionally go to the `booking_engine.decisions` channel
so an operator can raise or silence that trail on its own
(`DECISION_LOG_LEVEL`).
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Optional

from booking_engine.utils.config import get_settings

if TYPE_CHECKING:
    from booking_engine.domain.models import TimeWindow


DECISION_LOGGER_NAME = "booking_engine.decisions"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger(DECISION_LOGGER_NAME).setLevel(settings.decision_log_level.upper())
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def get_decision_logger() -> logging.Logger:
    return get_logger(DECISION_LOGGER_NAME)


def describe_window(window: "TimeWindow") -> str:
    """Render a window as `[start, end)` in ISO-8601 UTC."""
    return f"[{window.start.isoformat()}, {window.end.isoformat()})"
