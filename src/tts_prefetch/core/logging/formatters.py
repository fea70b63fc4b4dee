"""
Log formatters: JSON Lines for files/collectors, colored text for consoles.

JSONL:
    {"ts":"2026-01-15T14:30:05+03:00","level":2,"tag":"INFO","message":"dispatched","clip_id":"[speed=100]1.2.3","extra":{"in_flight":1}}

Console:
    14:30:05 [ INFO  ] ([speed=100]1.2.3) dispatched in_flight=1 0.012s
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from . import colors
from .colors import Colors, get_tag_color


class JsonlFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "clip_id": getattr(record, "clip_id", "-"),
        }

        code = getattr(record, "code", None)
        if code:
            payload["code"] = code

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Human-readable console lines.

    Scheduler pressure fields are highlighted: a growing dispatch delay
    or in-flight count turns yellow, then red.
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        clip_id = getattr(record, "clip_id", "-")

        parts = [
            colors.colorize(ts, Colors.DIM),
            colors.colorize(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if clip_id != "-":
            parts.append(colors.colorize(f"({clip_id})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        code = getattr(record, "code", None)
        if code:
            parts.append(colors.colorize(f"code={code}", Colors.MAGENTA))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.5:
                time_color = Colors.GREEN
            elif seconds < 3.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(colors.colorize(f"{seconds:.3f}s", time_color))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for key, value in extra_data.items():
                parts.append(colors.colorize(f"{key}={value}", self._field_color(key, value)))

        return " ".join(parts)

    def _field_color(self, key: str, value: Any) -> str:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return Colors.DIM
        if key == "delay_s":
            # 1.0s is the configured baseline
            if value <= 1.0:
                return Colors.CYAN
            return Colors.YELLOW if value < 2.0 else Colors.RED
        if key in ("in_flight", "pending"):
            if value < 5:
                return Colors.CYAN
            return Colors.YELLOW if value < 20 else Colors.RED
        return Colors.DIM
