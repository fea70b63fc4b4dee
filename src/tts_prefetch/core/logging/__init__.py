"""
tts-prefetch structured logging.

Events are logged by name with keyword fields rather than free-form
strings, so the same call renders as a colored console line or as a
JSONL record:

    from tts_prefetch.core.logging import get_logger, info, warn

    _LOG = get_logger("tts-prefetch.scheduler")
    info(_LOG, "dispatched", in_flight=2, delay_s=1.1)
    warn(_LOG, "rate_limited", code="RATE_LIMITED")

Verbosity (see levels.py) is a number 1-4; ``verbose`` and ``debug``
events are dropped unless the configured level reaches 3 or 4.

Configuration:
    logging:
      level: 2
      format: console   # or json
      file: logs/tts-prefetch.jsonl

    TTS_PREFETCH_LOG_LEVEL / TTS_PREFETCH_LOG_FORMAT / TTS_PREFETCH_LOG_FILE
    override the settings file.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Optional, Union

from . import colors
from .colors import Colors, colorize, get_tag_color, supports_color
from .context import (
    get_clip_id,
    get_level,
    get_level_name,
    get_log_config,
    is_configured,
    read_logging_config,
    set_clip_id,
    set_configured,
    set_level,
    set_log_config,
)
from .formatters import ColoredConsoleFormatter, JsonlFormatter
from .levels import LEVEL_MAP, LEVEL_NAMES, LogLevel, coerce_level


def configure_logging(level: Optional[Union[int, str, LogLevel]] = None, force: bool = False) -> None:
    """
    Install the tts-prefetch handlers on the root logger.

    Idempotent unless ``force`` is set. ``level`` overrides the
    configured verbosity.
    """
    if is_configured() and not force:
        return

    colors.USE_COLORS = supports_color()

    log_config = read_logging_config()
    set_log_config(log_config)

    current_level = coerce_level(level if level is not None else log_config.get("level", LogLevel.NORMAL))
    set_level(current_level)
    python_level = LEVEL_MAP.get(current_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG - 5)
    root.handlers = []

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(python_level)
    if str(log_config.get("format", "console")).lower() == "json":
        console.setFormatter(JsonlFormatter())
    else:
        console.setFormatter(ColoredConsoleFormatter())
    root.addHandler(console)

    log_file = log_config.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8", delay=True)
        file_handler.setLevel(logging.DEBUG - 5)
        file_handler.setFormatter(JsonlFormatter())
        root.addHandler(file_handler)

    set_configured(True)


def get_logger(name: str = "tts-prefetch") -> logging.Logger:
    """Get a logger, configuring logging on first use."""
    configure_logging()
    return logging.getLogger(name)


def _log(
    logger: logging.Logger,
    level: int,
    tag: str,
    msg: str,
    numeric_level: int = 2,
    **fields: Any
) -> None:
    if numeric_level > get_level():
        return

    code = fields.pop("code", None)
    seconds = fields.pop("seconds", None)
    logger.log(
        level,
        msg,
        extra={
            "tag": tag,
            "clip_id": fields.pop("clip_id", None) or get_clip_id(),
            "code": code,
            "seconds": seconds,
            "extra_data": fields or None,
            "numeric_level": numeric_level,
        },
    )


def info(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 2 event."""
    _log(logger, logging.INFO, "INFO", msg, numeric_level=2, **fields)


def warn(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 2 warning."""
    _log(logger, logging.WARNING, "WARN", msg, numeric_level=2, **fields)


def error(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 1 error; always shown."""
    _log(logger, logging.ERROR, "ERROR", msg, numeric_level=1, **fields)


def success(logger: logging.Logger, msg: str, **fields: Any) -> None:
    _log(logger, logging.INFO, "SUCCESS", msg, numeric_level=2, **fields)


def fail(logger: logging.Logger, msg: str, **fields: Any) -> None:
    _log(logger, logging.ERROR, "FAIL", msg, numeric_level=1, **fields)


def verbose(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 3 event."""
    _log(logger, logging.DEBUG, "INFO", msg, numeric_level=3, **fields)


def debug(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 4 event."""
    _log(logger, logging.DEBUG, "DEBUG", msg, numeric_level=4, **fields)


def trace(logger: logging.Logger, msg: str, **fields: Any) -> None:
    _log(logger, logging.DEBUG - 5, "TRACE", msg, numeric_level=4, **fields)


__all__ = [
    "LogLevel",
    "LEVEL_MAP",
    "LEVEL_NAMES",
    "coerce_level",
    "Colors",
    "colorize",
    "get_tag_color",
    "supports_color",
    "get_clip_id",
    "set_clip_id",
    "get_level",
    "set_level",
    "get_level_name",
    "get_log_config",
    "JsonlFormatter",
    "ColoredConsoleFormatter",
    "configure_logging",
    "get_logger",
    "info",
    "warn",
    "error",
    "success",
    "fail",
    "verbose",
    "debug",
    "trace",
]
