"""Logging configuration threaded through the gateway at construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass

VERBOSE = 5
PACKAGE_LOGGER = "plejdble"
LOG_FORMAT = "%(asctime)s %(levelname)s plejd-ble %(message)s"

logging.addLevelName(VERBOSE, "VERBOSE")


@dataclass(frozen=True)
class LogConfig:
    debug: bool = False
    verbose: bool = False

    @property
    def level(self) -> int:
        if self.verbose:
            return VERBOSE
        if self.debug:
            return logging.DEBUG
        return logging.INFO


def apply_log_config(config: LogConfig) -> logging.Logger:
    """Set the package logger level; handlers are left to the application."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(config.level)
    return logger


def configure_logging(config: LogConfig) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger = apply_log_config(config)
    logger.addHandler(handler)
    logger.propagate = False
