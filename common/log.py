# common/log.py
from __future__ import annotations
import logging
from common.models import LoggerLevel

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOGGER_NAME = "openapi-hub"

_LEVELS = {
    LoggerLevel.FATAL: logging.CRITICAL,
    LoggerLevel.ERROR: logging.ERROR,
    LoggerLevel.WARN: logging.WARNING,
    LoggerLevel.INFO: logging.INFO,
    LoggerLevel.DEBUG: logging.DEBUG,
    LoggerLevel.TRACE: TRACE,
}


def parse_level(level: LoggerLevel | str | None) -> LoggerLevel:
    if level is None:
        return LoggerLevel.INFO
    if isinstance(level, LoggerLevel):
        return level
    return LoggerLevel[level.upper()]


def get_logger(level: LoggerLevel | str | None = None,
               logger: logging.Logger | None = None) -> logging.Logger:
    """
    Return `logger` (or the hub logger) set to the stdlib level matching `level`.
    """
    log = logger or logging.getLogger(LOGGER_NAME)
    log.setLevel(_LEVELS[parse_level(level)])
    return log


def trace(log: logging.Logger, msg: str, *args) -> None:
    if log.isEnabledFor(TRACE):
        log.log(TRACE, msg, *args)
