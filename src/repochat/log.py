"""Logging setup for the repochat CLI.

Library modules only create ``logging.getLogger(__name__)`` loggers; handlers
are installed here, once, by the entry point.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_ROOT_LOGGER = "repochat"


def configure_logging(verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """Attach a RichHandler to the ``repochat`` logger (idempotent).

    Args:
        verbose: Log at DEBUG instead of WARNING.
        console: Console to write to (stderr by default).

    Returns:
        The configured ``repochat`` logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
    return logger
