import logging
import sys
from typing import Optional


class Logger:
    """
    Centralized logger for the console components.
    Wraps a named stdlib logger with a fixed line format.
    """

    # Log levels
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    LEVELS = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "WARN": WARNING,
        "ERROR": ERROR,
        "CRITICAL": CRITICAL,
    }

    FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(
        self,
        name: str,
        level: int = INFO,
        console_output: bool = True,
        file_output: Optional[str] = None,
    ):
        """
        Initialize logger with specified name and settings.

        Args:
            name: Name identifier for the logger
            level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            console_output: Whether to output logs to console
            file_output: Optional file path for log output
        """
        self.name = name
        self.level = level
        self.console_output = console_output
        self.file_output = file_output

        self._logger = logging.getLogger(name)
        self._configure()

    def _configure(self):
        self._logger.setLevel(self.level)
        self._logger.handlers = []  # Clear any existing handlers

        formatter = logging.Formatter(self.FORMAT, datefmt=self.DATE_FORMAT)

        if self.console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            self._logger.addHandler(console_handler)

        if self.file_output:
            file_handler = logging.FileHandler(self.file_output)
            file_handler.setFormatter(formatter)
            self._logger.addHandler(file_handler)

    def reconfigure(self, level: Optional[int] = None, file_output: Optional[str] = None):
        """Apply a new level and/or log file after config has been loaded."""
        if level is not None:
            self.level = level
        if file_output is not None:
            self.file_output = file_output
        self._configure()

    def _log(self, level: int, *args):
        message = " ".join(str(arg) for arg in args)
        self._logger.log(level, message)

    def debug(self, *args):
        self._log(Logger.DEBUG, *args)

    def info(self, *args):
        self._log(Logger.INFO, *args)

    def warning(self, *args):
        self._log(Logger.WARNING, *args)

    def error(self, *args):
        self._log(Logger.ERROR, *args)

    def critical(self, *args):
        self._log(Logger.CRITICAL, *args)

    # Shorthand methods
    def warn(self, *args):
        self.warning(*args)

    def err(self, *args):
        self.error(*args)


# Default logger instances
store_logger = Logger("STORE")
session_logger = Logger("SESSION")
relay_logger = Logger("RELAY")
api_logger = Logger("API")
app_logger = Logger("APP")

ALL_LOGGERS = (store_logger, session_logger, relay_logger, api_logger, app_logger)


def level_from_name(name: str) -> int:
    return Logger.LEVELS.get(str(name).upper(), Logger.INFO)


def configure_logging(level: str = "INFO", file_output: Optional[str] = None):
    """Apply configured level and log file to every console logger."""
    numeric = level_from_name(level)
    for logger in ALL_LOGGERS:
        logger.reconfigure(level=numeric, file_output=file_output)
