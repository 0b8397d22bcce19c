"""Logging configuration for the reminder engine."""

import logging
import sys
from datetime import datetime

from config import LOG_DIR, LOG_LEVEL


def setup_logging() -> logging.Logger:
    """Log to a dated file, and to the console when running in a terminal.

    APScheduler's own logger shares the handlers at WARNING level.
    """
    level = getattr(logging, LOG_LEVEL.upper(), logging.INFO)
    logger = logging.getLogger("reminder_engine")
    logger.setLevel(level)
    logger.handlers.clear()

    handlers = []

    log_file = LOG_DIR / f"reminders-{datetime.now().strftime('%Y-%m-%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(module)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    handlers.append(file_handler)

    if sys.stdout is not None and sys.stdout.isatty():
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(message)s",
            datefmt="%H:%M:%S"
        ))
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)

    scheduler_logger = logging.getLogger("apscheduler")
    scheduler_logger.setLevel(logging.WARNING)
    scheduler_logger.handlers.clear()
    for handler in handlers:
        scheduler_logger.addHandler(handler)

    return logger


# Global logger instance
logger = setup_logging()
