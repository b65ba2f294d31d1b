import logging
import os

LOGGING_FORMAT = "[{asctime}|{filename}:{funcName}:{lineno:d}]{levelname}  {message}"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
}


def setup_logger(level: str | None = None) -> logging.Logger:
    """Configure the root logger for console output.

    The level defaults to the LOG_LEVEL environment variable, then "info".
    """
    level = level or os.environ.get("LOG_LEVEL", "info")
    logger = logging.getLogger()
    logger.setLevel(_LEVELS.get(level.lower(), logging.INFO))

    formatter = logging.Formatter(LOGGING_FORMAT, style="{", datefmt="%H:%M:%S")

    # Create a handler for console output
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.addHandler(console_handler)

    return logger
