"""Logging configuration helpers for the engine and CLI."""
import logging

from rich.logging import RichHandler


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a rich handler to the package logger and return it."""
    logger = logging.getLogger("homework_sync")
    logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(rich_tracebacks=True, show_path=False))
    logger.propagate = False
    return logger
