"""
Logging configuration for Dealbase Maintenance.

Everything logs under the "dealbase" logger: cleaner components take a
child of it via get_logger, so one console handler and one log file under
settings.LOG_DIR cover the whole run.
"""

import logging
import sys

from config.settings import settings

ROOT_LOGGER_NAME = "dealbase"

LOG_DIR = settings.LOG_DIR
LOG_DIR.mkdir(parents=True, exist_ok=True)


def setup_logging(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Configure the named logger with a stdout handler and a file handler.

    The console shows INFO (DEBUG when settings.DEBUG is set); the file
    LOG_DIR/<name>.log always keeps DEBUG, which includes every scored pair.
    Calling it again returns the logger unchanged.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    file_handler = logging.FileHandler(LOG_DIR / f"{name}.log")
    file_handler.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """
    Child logger for a component, e.g. get_logger("db_cleaner.merger").

    Records propagate to the configured root logger's handlers.
    """
    return logger.getChild(component)


logger = setup_logging()
