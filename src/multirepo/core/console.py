"""Rich console for command output; log records go to stderr through Rich."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()
stderr_console = Console(stderr=True)

PACKAGE_LOGGER = "multirepo"


def setup_logging(level: str | int = logging.INFO, verbose: bool = False) -> logging.Logger:
    """Attach one RichHandler to the package logger and return it.

    `verbose` forces DEBUG, which shows every git invocation. Unknown level
    names fall back to INFO. Calling this again replaces the handler.
    """
    if verbose:
        numeric_level = logging.DEBUG
    elif isinstance(level, int):
        numeric_level = level
    else:
        numeric_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    handler = RichHandler(console=stderr_console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(numeric_level)
    logger.propagate = False
    return logger
