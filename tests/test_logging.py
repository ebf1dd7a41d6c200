"""Tests for logging utilities."""

import logging
from io import StringIO

import numpy as np

from dualopt import LogOptions, Options, optimize_lm
from dualopt.logging import (
    configure_logging,
    get_logger,
    set_log_level,
)


def test_get_logger_returns_logger():
    """Test that get_logger returns a logger instance."""
    logger = get_logger("test_module")
    assert isinstance(logger, logging.Logger)
    assert logger.name.startswith("dualopt.")


def test_get_logger_keeps_package_prefix():
    """Module names already under the package are not prefixed twice."""
    assert get_logger("dualopt.optimizer").name == "dualopt.optimizer"
    assert get_logger().name == "dualopt"


def test_get_logger_caching():
    """Test that get_logger caches loggers."""
    logger1 = get_logger("test_module")
    logger2 = get_logger("test_module")
    assert logger1 is logger2


def test_get_logger_different_modules():
    """Test that different modules get different loggers."""
    logger1 = get_logger("module1")
    logger2 = get_logger("module2")
    assert logger1 is not logger2
    assert logger1.name != logger2.name


def test_set_log_level_string():
    """Test that set_log_level accepts string levels."""
    logger = get_logger("test_module")

    set_log_level("DEBUG")
    assert logger.level == logging.DEBUG

    set_log_level("ERROR")
    assert logger.level == logging.ERROR


def test_configure_logging():
    """Test configure_logging function."""
    stream = StringIO()
    logger = get_logger("test_module")
    try:
        configure_logging(level=logging.DEBUG, stream=stream)
        logger.debug("Debug message")
        assert "[DEBUG] dualopt.test_module: Debug message" in stream.getvalue()
    finally:
        configure_logging(level=logging.WARNING)


def test_logger_does_not_propagate():
    """Test that loggers don't propagate to root logger."""
    logger = get_logger("test_module")
    assert logger.propagate is False


def test_optimizer_logs_iterations_to_package_logger():
    """Iteration records go to the package logger when none is given."""
    stream = StringIO()
    get_logger("dualopt.optimizer")
    try:
        configure_logging(level=logging.INFO, stream=stream)
        optimize_lm(np.array([1.0]), lambda x: x - 2.0)
        output = stream.getvalue()
        assert "#0 accepted" in output
        assert "MIN_GRAD_NORM" in output or "MIN_DELTA_NORM" in output
    finally:
        configure_logging(level=logging.WARNING)


def test_optimizer_honours_disabled_logging():
    """No record is emitted when logging is disabled in the options."""
    stream = StringIO()
    get_logger("dualopt.optimizer")
    try:
        configure_logging(level=logging.DEBUG, stream=stream)
        optimize_lm(np.array([1.0]), lambda x: x - 2.0, options=Options(log=LogOptions(enable=False)))
        assert stream.getvalue() == ""
    finally:
        configure_logging(level=logging.WARNING)


def test_configure_logging_applies_to_new_loggers():
    """Loggers created after configure_logging share its stream and format."""
    stream = StringIO()
    try:
        configure_logging(level="INFO", format_string="%(name)s|%(message)s", stream=stream)
        logger = get_logger("created_after_configure")
        logger.info("hello")
        assert stream.getvalue() == "dualopt.created_after_configure|hello\n"
        assert len(logger.handlers) == 1
    finally:
        configure_logging(level=logging.WARNING)
