"""Logging configuration for the application."""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import settings


def setup_logging(name: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """Set up logging configuration.

    Args:
        name: Name of the logger. If None, configures the root logger.
        level: Log level name. Defaults to ``settings.LOG_LEVEL``.

    Returns:
        Configured logger instance.
    """
    # Create logs directory if it doesn't exist
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    # Add handlers if they haven't been added before
    if not logger.handlers:
        formatter = logging.Formatter(settings.LOG_FORMAT)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)

        # Create a file handler that rotates log files
        file_handler = RotatingFileHandler(
            log_dir / "beerledger.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)

        logger.addHandler(console_handler)
        logger.addHandler(file_handler)

    # Prevent logging from propagating to the root logger
    logger.propagate = False

    return logger
