"""Logger Module."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from rtcontour.paths import LOG_DIR

LOG_FORMAT = "[ %(asctime)s - %(name)s ] - %(levelname)s : %(message)s"
LOG_LEVEL_ENV = "RTCONTOUR_LOG_LEVEL"


def resolve_level(level: Union[int, str, None], default: int = logging.INFO) -> int:
    """Turn a level name ("debug", "WARNING") or number into a logging level.

    :raises ValueError: For an unknown level name.
    """
    if level is None or level == "":
        return default
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level: {level}")
    return resolved


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def setup_logger(
    name: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    level: Union[int, str] = logging.DEBUG,
    *,
    log_to_console: bool = True,
) -> logging.Logger:
    """Create (or fetch) a configured logger.

    Handlers are attached only on the first call for a name; later calls
    only change the level.

    :param Optional[str] name: Logger name, defaults to None (root logger)
    :param Optional[Union[str, Path]] log_file: Rotating log file, defaults to None
    :param Union[int, str] level: Level number or name, defaults to logging.DEBUG
    :param bool log_to_console: Also log to stdout, defaults to True
    :return logging.Logger: The logger object.
    """
    level = resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    if log_to_console:
        _attach(logger, logging.StreamHandler(sys.stdout), level)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        _attach(logger, RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=5), level)
    return logger


logger = setup_logger("rtcontour", LOG_DIR / "rtcontour.log", level=resolve_level(os.environ.get(LOG_LEVEL_ENV)))
