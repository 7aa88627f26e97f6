from __future__ import annotations

import logging

from plejdble.core.log_config import PACKAGE_LOGGER, VERBOSE, LogConfig, apply_log_config


def test_levels() -> None:
    assert LogConfig().level == logging.INFO
    assert LogConfig(debug=True).level == logging.DEBUG
    assert LogConfig(debug=True, verbose=True).level == VERBOSE
    assert logging.getLevelName(VERBOSE) == "VERBOSE"


def test_apply_log_config_sets_package_level() -> None:
    logger = logging.getLogger(PACKAGE_LOGGER)
    previous = logger.level
    try:
        assert apply_log_config(LogConfig(verbose=True)) is logger
        assert logger.level == VERBOSE
        assert logging.getLogger("plejdble.core.service").getEffectiveLevel() == VERBOSE
    finally:
        logger.setLevel(previous)
