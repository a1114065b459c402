"""Logging configuration for the chatstream server and client."""

from __future__ import annotations

import logging

__all__ = ["setup_logging"]

CONSOLE_FORMAT = "%(asctime)s [%(levelname).1s] %(name)s: %(message)s"


def setup_logging(level: str | int = "INFO", name: str = "chatstream") -> logging.Logger:
    """Configure the package logger with a single console handler.

    Calling it again replaces the previous handler, so the app lifespan can
    re-apply a level read from the config file.
    """
    logger = logging.getLogger(name)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.propagate = False

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(handler)
    return logger
