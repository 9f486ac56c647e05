"""Logging configuration for git-compare."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure the root logger for one run.

    Args:
        verbose: If True, show INFO level messages
        debug: If True, show DEBUG level messages with times and source paths
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Replace handlers so repeated runs in one process don't stack output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_time=debug,
        show_path=debug,
        rich_tracebacks=debug,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("[%(name)s] %(message)s" if debug else "%(message)s"))
    root_logger.addHandler(handler)
