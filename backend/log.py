"""Logging helpers for the DuckGrid backend."""

from __future__ import annotations

import logging
import sys


class _LoggerHolder:
    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Return the shared ``duckgrid`` logger, creating its handler once."""
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("duckgrid")
        logger.setLevel(logging.WARNING)

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(
                logging.Formatter("%(name)s - %(levelname)s - %(message)s")
            )
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def debug(msg: str) -> None:
    get_logger().debug(msg)


def info(msg: str) -> None:
    get_logger().info(msg)


def warn(msg: str) -> None:
    """Log a warning. Never raises."""
    get_logger().warning(msg)


def error(msg: str) -> None:
    get_logger().error(msg)


def set_level(level: int | str) -> None:
    """Set the level, accepting either ``logging.DEBUG`` or ``"debug"``."""
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)
