"""
Logging context: clip correlation and configuration state.

Every log record emitted while a clip is being prepared, dispatched or
stored carries that clip's ID, taken from a context variable. Worker
threads (scheduler loop, synthesis callbacks) set it explicitly for
the clip they are handling.

Environment Variables:
    - TTS_PREFETCH_LOG_LEVEL: verbosity (1-4 or a level name)
    - TTS_PREFETCH_LOG_FORMAT: ``console`` (default) or ``json``
    - TTS_PREFETCH_LOG_FILE: also append JSONL records to this file
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

from .levels import LEVEL_NAMES, LogLevel

_clip_id: ContextVar[str] = ContextVar("clip_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_clip_id() -> str:
    """Clip ID bound to the current context, or ``-``."""
    return _clip_id.get()


def set_clip_id(clip_id: str) -> None:
    _clip_id.set(clip_id or "-")


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(int(_current_level), "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve the logging section from settings.yaml and the environment.

    Environment variables take precedence over the settings file. A
    missing or unreadable settings file leaves the defaults in place.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("TTS_PREFETCH_SETTINGS", "config/settings.yaml")
    if os.path.exists(settings_path):
        import yaml

        from tts_prefetch.core.config import load_settings

        try:
            cfg.update(load_settings(settings_path).raw.get("logging", {}) or {})
        except (OSError, ValueError, yaml.YAMLError) as exc:
            # logging is not configured yet, so report on stderr
            import sys
            print(f"tts-prefetch: ignoring logging settings: {exc}", file=sys.stderr)

    if os.getenv("TTS_PREFETCH_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_PREFETCH_LOG_LEVEL"]
    if os.getenv("TTS_PREFETCH_LOG_FORMAT"):
        cfg["format"] = os.environ["TTS_PREFETCH_LOG_FORMAT"]
    if os.getenv("TTS_PREFETCH_LOG_FILE"):
        cfg["file"] = os.environ["TTS_PREFETCH_LOG_FILE"]

    return cfg
