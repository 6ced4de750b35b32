"""Console and file logging configuration."""

import logging
import sys
from typing import Optional

from ..config import get_settings


LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
FILE_LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

NOISY_LOGGERS = {
    'aiosqlite': logging.WARNING,
    'asyncio': logging.WARNING,
    'aiohttp.access': logging.WARNING,
    'sqlalchemy.engine': logging.WARNING,
    'playwright': logging.WARNING,
    'uvicorn.access': logging.WARNING,
}


class ColoredFormatter(logging.Formatter):
    """Formatter with ANSI colored level names."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        original = record.levelname
        record.levelname = f"{self.COLORS.get(original, self.RESET)}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    use_colors: bool = True
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to log to
        use_colors: Whether to use colored output in console
    """
    settings = get_settings()
    log_level = level or settings.log_level

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if use_colors and sys.stdout.isatty():
        console_handler.setFormatter(ColoredFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    else:
        console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(fmt=FILE_LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def log_operation(
    logger: logging.Logger,
    operation: str,
    status: str,
    **context
):
    """
    Log an operation milestone with key=value context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., 'check_monitor', 'run_tick')
        status: 'started', 'completed', 'failed' or anything else for debug
        **context: Additional context key-value pairs
    """
    context_str = " | ".join(f"{k}={v}" for k, v in context.items())
    message = f"{operation} | {status}"
    if context_str:
        message = f"{message} | {context_str}"

    if status == 'failed':
        logger.error(message)
    elif status in ('started', 'completed'):
        logger.info(message)
    else:
        logger.debug(message)
