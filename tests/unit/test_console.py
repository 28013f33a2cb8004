from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

from multirepo.core.console import PACKAGE_LOGGER, setup_logging


@pytest.fixture(autouse=True)
def restore_package_logger():  # noqa: ANN201
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.mark.parametrize(
    ("level", "verbose", "expected"),
    [
        ("warning", False, logging.WARNING),
        (logging.ERROR, False, logging.ERROR),
        ("nonsense", False, logging.INFO),
        ("ERROR", True, logging.DEBUG),
    ],
)
def test_setup_logging_levels(level: str | int, verbose: bool, expected: int) -> None:
    logger = setup_logging(level, verbose=verbose)

    assert logger.name == PACKAGE_LOGGER
    assert logger.level == expected
    assert logging.getLogger("multirepo.git.client").getEffectiveLevel() == expected


def test_setup_logging_replaces_its_handler() -> None:
    setup_logging()
    logger = setup_logging()

    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], RichHandler)
    assert logger.propagate is False
