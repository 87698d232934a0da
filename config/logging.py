"""
Logging configuration for SiteLog entity resolution.

Levels follow what a reviewer needs to act on:
    DEBUG    per-step resolution traces (alias hits, scores)
    INFO     entity creations, merges, report summaries
    WARNING  ambiguity, alias conflicts, creation races, [REVIEW] flags
    ERROR    store failures, logged before the rollback and re-raise

Everything at WARNING and above is also written to review.log, so the
people who adjudicate ambiguous names have one file to work from.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from config.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
REVIEW_LOG = "review.log"


def setup_logging(name: str = "sitelog", log_dir: Optional[Path] = None) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        name: Logger name, also the main log file name
        log_dir: Directory for log files (default: settings.LOG_DIR)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    log_dir = Path(log_dir or settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Console handler; resolution traces only when DEBUG is on
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    # Full trace
    file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)

    # Everything a reviewer has to look at
    review_handler = logging.FileHandler(log_dir / REVIEW_LOG, encoding="utf-8")
    review_handler.setLevel(logging.WARNING)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in (console_handler, file_handler, review_handler):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


# Default logger
logger = setup_logging()
