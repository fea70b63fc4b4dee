"""
Numeric verbosity levels for tts-prefetch logging.

The prefetch subsystem logs on a 1-4 scale instead of Python's
DEBUG/INFO/WARNING names:

    1 = MINIMAL  - startup, shutdown, dropped requests
    2 = NORMAL   - prepare, dispatch, cache stores (default)
    3 = VERBOSE  - sequencer decisions, drain/cool-down transitions
    4 = DEBUG    - per-ID parsing and cache lookups

Usage:
    from tts_prefetch.core.logging.levels import LogLevel, coerce_level

    coerce_level("verbose")   # LogLevel.VERBOSE
    coerce_level(logging.INFO)  # LogLevel.NORMAL
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Verbosity levels, higher is chattier."""
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3
    DEBUG = 4


# Handler thresholds for each verbosity level
LEVEL_MAP = {
    LogLevel.MINIMAL: logging.WARNING,
    LogLevel.NORMAL: logging.INFO,
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.DEBUG: logging.DEBUG - 5,
}

LEVEL_NAMES = {level.value: level.name for level in LogLevel}

_NAME_ALIASES = {
    "TRACE": LogLevel.DEBUG,
    "CRITICAL": LogLevel.MINIMAL,
    "ERROR": LogLevel.MINIMAL,
    "WARNING": LogLevel.MINIMAL,
    "WARN": LogLevel.MINIMAL,
    "INFO": LogLevel.NORMAL,
}


def coerce_level(value: Any) -> LogLevel:
    """
    Convert an int, a level name or a numeric string to a LogLevel.

    Python logging levels (``logging.INFO`` etc.) are mapped onto the
    nearest verbosity. Anything unrecognised falls back to NORMAL.
    """
    if isinstance(value, LogLevel):
        return value

    if isinstance(value, bool):
        return LogLevel.NORMAL

    if isinstance(value, int):
        if 1 <= value <= 4:
            return LogLevel(value)
        if value >= logging.WARNING:
            return LogLevel.MINIMAL
        if value >= logging.INFO:
            return LogLevel.NORMAL
        return LogLevel.DEBUG

    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return coerce_level(int(name))
        if name in LogLevel.__members__:
            return LogLevel[name]
        return _NAME_ALIASES.get(name, LogLevel.NORMAL)

    return LogLevel.NORMAL
