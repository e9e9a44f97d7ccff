"""Logging setup for the command-line application."""

import logging

from rich.logging import RichHandler


def setup_logging(level: str = "WARNING") -> None:
    """Send log messages from all classdiary modules to the console."""
    root_logger = logging.getLogger()
    if not any(isinstance(h, RichHandler) for h in root_logger.handlers):
        handler = RichHandler(show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())
    logging.getLogger(__name__).debug("Logging initialized at level %s", level)
