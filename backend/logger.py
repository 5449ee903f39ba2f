import logging
import sys
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

# Logs directory can be moved with STUDY_TRACKER_LOGS_DIR
LOGS_DIR = os.getenv(
    "STUDY_TRACKER_LOGS_DIR",
    os.path.join(os.path.dirname(__file__), "logs")
)


class CustomFormatter(logging.Formatter):
    """Custom formatter with colors for console output"""

    grey = "\x1b[38;20m"
    blue = "\x1b[34;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    FORMATS = {
        logging.DEBUG: grey + format_str + reset,
        logging.INFO: blue + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)

def setup_logger(
    name: str = "StudyTracker",
    level: int = logging.INFO,
    logs_dir: Optional[str] = None
) -> logging.Logger:
    """Console plus rotating-file logger; the log directory is created on first setup."""

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Handlers are attached once per logger name
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomFormatter())
    logger.addHandler(console_handler)

    logs_dir = logs_dir or LOGS_DIR
    os.makedirs(logs_dir, exist_ok=True)

    # 5MB max size per file, keep last 5 backups
    log_file = os.path.join(logs_dir, "study_tracker.log")
    file_handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Child logger for a module, sharing the service handlers."""
    return logger.getChild(component)


def set_level(level_name: str) -> None:
    """Apply a textual level (e.g. from ServerConfig.log_level)."""
    logger.setLevel(getattr(logging, level_name.upper(), logging.INFO))


# Service logger; handlers are attached by setup_logger() at startup
logger = logging.getLogger("StudyTracker")
