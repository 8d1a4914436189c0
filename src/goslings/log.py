"""Logging setup for the ``goslings`` command line.

Library modules only ever call ``logging.getLogger(__name__)``; they never
configure handlers. The CLI calls :func:`setup_logging` once at startup to
route those records to stderr through Rich.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_LOGGER_NAME = "goslings"


def setup_logging(verbose: bool = False, no_color: bool = False) -> logging.Logger:
    """Install a :class:`~rich.logging.RichHandler` on the ``goslings`` logger.

    ``verbose`` lowers the level from WARNING to DEBUG. Calling this again
    replaces the previously installed handler instead of stacking another.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False
    return logger
