import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path


def setup_logger(name="viyaabhaaram", level=None, log_file=None):
    """
    Configure the package logger.

    - Console output always
    - Daily rotating file output when LOG_FILE (or `log_file`) is set
    - Unified format with timestamp and level
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers if setup_logger() is called multiple times
    if logger.handlers:
        return logger

    logger.setLevel(level or os.getenv("LOG_LEVEL", "INFO").upper())

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = log_file or os.getenv("LOG_FILE")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
