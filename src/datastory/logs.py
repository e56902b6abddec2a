"""Logging setup driven by LoggingSettings."""

from __future__ import annotations

import logging
from logging import getLogger
from typing import Optional

from .config import LoggingSettings

__all__ = ["configure_logging", "getLogger"]

_handler: Optional[logging.Handler] = None


def configure_logging(settings: LoggingSettings) -> None:
    """
    Install the configured level and format on the ``datastory`` logger tree.

    Repeated calls replace the handler installed by a previous call instead
    of stacking handlers.
    """
    global _handler

    root = logging.getLogger("datastory")
    root.setLevel(settings.level)

    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter(settings.format))
    root.addHandler(_handler)
