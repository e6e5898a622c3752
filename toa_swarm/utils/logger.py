"""Logging utilities for toa_swarm."""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Per-step resample and degeneracy messages come from here
FILTER_LOGGER = "models.particle_filter"


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logger(
    name: str = "toa_swarm",
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    filter_log_level: Optional[str] = "INFO",
) -> logging.Logger:
    """
    Set up the package logger with console and optional file handlers.

    Particle filters log every resample at DEBUG, which floods long runs;
    ``filter_log_level`` sets their threshold separately from the rest of
    the package.

    Args:
        name: Logger name (the package root)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        filter_log_level: Level for the particle filter logger; None
            inherits ``log_level``

    Returns:
        Configured logger
    """
    level = _resolve_level(log_level)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers = []

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    filter_logger = logging.getLogger(f"{name}.{FILTER_LOGGER}")
    if filter_log_level is None:
        filter_logger.setLevel(logging.NOTSET)
    else:
        filter_logger.setLevel(_resolve_level(filter_log_level))

    return logger
