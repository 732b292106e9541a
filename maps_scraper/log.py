"""
Logging Setup

Colored log lines for the console. Only the level name is colored so the
rest of the line stays grep-friendly.
"""

import logging
import sys
from typing import Optional

import colorama
from colorama import Fore, Style

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LEVEL_COLORS = {
    "DEBUG": Fore.CYAN,
    "INFO": Fore.GREEN,
    "WARNING": Fore.YELLOW,
    "ERROR": Fore.RED,
    "CRITICAL": Fore.RED + Style.BRIGHT,
}


class ColorFormatter(logging.Formatter):
    """Formatter that colors the level name of each record"""

    def __init__(self, use_color: bool = True):
        super().__init__(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        if not self.use_color:
            return formatted

        levelname = record.levelname
        color = LEVEL_COLORS.get(levelname, "")
        start = formatted.find(levelname)
        if start == -1:
            return f"{color}{formatted}{Style.RESET_ALL}"
        return (
            formatted[:start]
            + f"{color}{levelname}{Style.RESET_ALL}"
            + formatted[start + len(levelname):]
        )


def setup_logging(level: str = "INFO", use_color: Optional[bool] = None) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Log level name (e.g. "INFO", "DEBUG")
        use_color: Force colors on/off; defaults to whether stderr is a TTY

    Returns:
        The configured ``maps_scraper`` logger
    """
    if use_color is None:
        use_color = sys.stderr.isatty()
    if use_color:
        colorama.just_fix_windows_console()

    logger = logging.getLogger("maps_scraper")
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter(use_color=use_color))
    logger.addHandler(handler)
    return logger
