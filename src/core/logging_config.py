"""Structured logging configuration.

This module initializes structlog loggers with a stable JSON format.
The minimum level comes from the runtime configuration.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

from core.config import log_level_from_env


def get_logger(name: str) -> Any:
    """Return a module logger instance.

    Args:
        name: Logger name, usually __name__.

    Returns:
        A structlog logger with structured output.
    """
    level_name = log_level_from_env()
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger(name)
