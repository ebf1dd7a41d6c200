"""Logging utilities for dualopt.

Optimizers never write to a global stream directly: they log through the
logger passed in their options, falling back to the package logger returned
by :func:`get_logger`. Package loggers do not propagate to the root logger
and share one output configuration (level, stream and format), which
:func:`configure_logging` changes for existing and future loggers alike.

The initial level is read from the ``DUALOPT_LOG_LEVEL`` environment variable.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_PACKAGE = "dualopt"
_LEVEL_ENV_VAR = "DUALOPT_LOG_LEVEL"


def _parse_level(level: int | str) -> int:
    if isinstance(level, str):
        if level.isdigit():
            return int(level)
        return getattr(logging, level.upper(), logging.WARNING)
    return level


# Shared output configuration of the package loggers
_DEFAULT_LEVEL = _parse_level(os.getenv(_LEVEL_ENV_VAR, "WARNING"))
_DEFAULT_FORMAT = "[%(levelname)s] %(name)s: %(message)s"
_stream: Optional[object] = None
_format = _DEFAULT_FORMAT

_loggers: dict[str, logging.Logger] = {}


def _attach_handler(logger: logging.Logger) -> None:
    """Replace the handlers of ``logger`` with one following the shared configuration."""
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(_stream if _stream is not None else sys.stderr)
    handler.setLevel(_DEFAULT_LEVEL)
    handler.setFormatter(logging.Formatter(_format))
    logger.setLevel(_DEFAULT_LEVEL)
    logger.addHandler(handler)
    logger.propagate = False


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get or create a package logger.

    Args:
        name: Module name, typically ``__name__``. Names outside the package
            are prefixed with ``dualopt.``. If None, returns the package
            logger.

    Example:
        >>> from dualopt.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Building normal equations")
    """
    if name is None:
        name = _PACKAGE
    if name != _PACKAGE and not name.startswith(_PACKAGE + "."):
        name = f"{_PACKAGE}.{name}"

    logger = _loggers.get(name)
    if logger is None:
        logger = logging.getLogger(name)
        if not logger.handlers:
            _attach_handler(logger)
        _loggers[name] = logger
    return logger


def set_log_level(level: int | str) -> None:
    """Set the level of all dualopt loggers and their handlers.

    Args:
        level: Logging level (logging.DEBUG, logging.INFO, etc.) or its name.

    Example:
        >>> from dualopt.logging import set_log_level
        >>> set_log_level("INFO")
    """
    global _DEFAULT_LEVEL
    _DEFAULT_LEVEL = _parse_level(level)
    for logger in _loggers.values():
        logger.setLevel(_DEFAULT_LEVEL)
        for handler in logger.handlers:
            handler.setLevel(_DEFAULT_LEVEL)


def configure_logging(
    level: int | str = logging.WARNING,
    format_string: Optional[str] = None,
    stream: Optional[object] = None,
) -> None:
    """Send every dualopt logger to ``stream`` with the given level and format.

    Args:
        level: Logging level (default: WARNING).
        format_string: Record format. If None, uses ``[LEVEL] name: message``.
        stream: Output stream (default: sys.stderr).
    """
    global _DEFAULT_LEVEL, _format, _stream
    _DEFAULT_LEVEL = _parse_level(level)
    _format = format_string or _DEFAULT_FORMAT
    _stream = stream
    for logger in _loggers.values():
        _attach_handler(logger)


__all__ = ["configure_logging", "get_logger", "set_log_level"]
