# ABOUTME: Logging configuration setup for mailhub application
# ABOUTME: Console logging on stderr, optional rotating log file, uncaught exceptions logged
import logging
import logging.handlers
import sys
from pathlib import Path

from mailhub.config import Config
from mailhub.exceptions import ConfigError

LOGGER_NAME = "mailhub"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def _parse_level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ConfigError(
            f"Unknown log level: {log_level}",
            recovery_hint="Use DEBUG, INFO, WARNING, ERROR or CRITICAL",
        )
    return level


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    log_dir: str | None = None,
) -> None:
    """
    Configure the "mailhub" logger. Safe to call repeatedly.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Log file name (if None, logs to stderr only)
        log_dir: Directory for log files (if None, uses XDG state directory)
    """
    level = _parse_level(log_level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir) if log_dir else Config().get_log_dir()
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = handle_exception

    logger.debug(f"Logging initialized at {log_level} level")
