"""Logging setup utilities for termbridge.

Configures the ``termbridge`` logger and routes uvicorn's server
logger through the same handlers so the bridge writes one stream.
"""

from __future__ import annotations

import logging
import sys

from termbridge.config.settings import LoggingConfig

# uvicorn.access is left alone: the bridge has no HTTP traffic worth logging.
_SHARED_LOGGERS = ("termbridge", "uvicorn.error")


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure logging for the termbridge service.

    Safe to call more than once; handlers installed by a previous call
    are replaced rather than duplicated.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    level = getattr(logging, config.level.upper(), logging.INFO)
    formatter = logging.Formatter(config.format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    for handler in handlers:
        handler.setFormatter(formatter)

    for name in _SHARED_LOGGERS:
        target = logging.getLogger(name)
        for old in list(target.handlers):
            target.removeHandler(old)
            old.close()
        for handler in handlers:
            target.addHandler(handler)
        target.setLevel(level)
        target.propagate = False

    logging.getLogger("termbridge").info("Logging initialized at %s level", config.level)
