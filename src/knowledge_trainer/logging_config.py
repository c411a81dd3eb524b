"""Loguru sink setup for the CLI."""
import sys

from loguru import logger


def configure_logging(level: str = "WARNING") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
