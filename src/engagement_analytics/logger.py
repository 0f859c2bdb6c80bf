"""
Logging configuration
"""
import sys

from loguru import logger

log = logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logger(level: str = "INFO", log_dir=None):
    """Configure console (and optionally file) logging."""
    logger.remove()  # Remove default handler

    logger.add(sys.stderr, colorize=True, format=CONSOLE_FORMAT, level=level)

    if log_dir is not None:
        logger.add(
            f"{log_dir}/engagement_{{time:YYYY-MM-DD}}.log",
            rotation="00:00",
            retention="30 days",
            level="INFO",
        )

    return logger
