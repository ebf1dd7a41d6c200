"""Pytest configuration and shared fixtures for dualopt tests.

This module provides:
- Deterministic RNG fixtures for numpy
- Quiet package loggers, restored after each test
"""

import logging
import os

import numpy as np
import pytest

from dualopt.logging import set_log_level


@pytest.fixture(scope="function")
def rng() -> np.random.Generator:
    """Provide a deterministic numpy RNG for tests.

    Uses seed from TEST_RNG_SEED environment variable (default: 0).
    This ensures tests are reproducible while allowing override for debugging.

    Returns:
        A seeded numpy.random.Generator instance.
    """
    seed = int(os.environ.get("TEST_RNG_SEED", "0"))
    return np.random.default_rng(seed)


@pytest.fixture(scope="function", autouse=True)
def set_random_seeds() -> None:
    """Auto-use fixture to set the global numpy seed for reproducibility."""
    np.random.seed(int(os.environ.get("TEST_RNG_SEED", "0")))


@pytest.fixture(scope="function")
def capture_logger():
    """Logger collecting records in memory, to be passed through LogOptions."""

    class _ListHandler(logging.Handler):
        def __init__(self) -> None:
            super().__init__(level=logging.DEBUG)
            self.messages: list = []

        def emit(self, record: logging.LogRecord) -> None:
            self.messages.append(record.getMessage())

    logger = logging.getLogger("dualopt-tests.capture")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = _ListHandler()
    logger.addHandler(handler)
    logger.messages = handler.messages
    yield logger
    logger.removeHandler(handler)


@pytest.fixture(scope="function", autouse=True)
def quiet_package_logs():
    """Keep the package loggers at WARNING between tests."""
    yield
    set_log_level(logging.WARNING)
