"""Logging setup for the snippetstore processes."""

from __future__ import annotations

import logging

LOGGER_NAME = "snippetstore"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the project logger once and return it."""
    logger = logging.getLogger(LOGGER_NAME)
    resolved = getattr(logging, level.upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


__all__ = ["LOGGER_NAME", "setup_logging"]
