"""
Logging Setup

Root logger configuration shared by the queue tooling.
Console output always; daily-rotating file output when a log directory is set.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from config.settings import LOG_BACKUP_COUNT, LOG_DIR, LOG_LEVEL, LOG_QUEUE_FILE

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s | %(name)s"


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Logs to console and, if a directory is given, to a file with rotation:
    - Daily rotation
    - Keep LOG_BACKUP_COUNT days of logs

    Args:
        level: Log level name (None = LOG_LEVEL from settings)
        log_dir: Directory for the rotating log file (None = LOG_DIR)

    Returns:
        The configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))

    # Calling again replaces our handlers instead of stacking them
    for handler in list(logger.handlers):
        if getattr(handler, "_queue_handler", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler (stdout)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler._queue_handler = True
    logger.addHandler(console_handler)

    target_dir = log_dir if log_dir is not None else LOG_DIR
    if not target_dir:
        return logger

    log_file = Path(target_dir) / LOG_QUEUE_FILE
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            str(log_file),
            when="midnight",
            interval=1,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler._queue_handler = True
        logger.addHandler(file_handler)
    except (PermissionError, FileNotFoundError) as e:
        logger.warning(f"Cannot write to {log_file} ({e}), logging to console only")

    return logger
