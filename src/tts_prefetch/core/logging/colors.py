"""
ANSI colors for the console formatter.

Color output follows the https://no-color.org/ convention:
``NO_COLOR`` (or ``TTS_PREFETCH_NO_COLOR``) disables it, ``FORCE_COLOR``
enables it even when stdout is not a terminal.
"""
from __future__ import annotations

import os
import sys


class Colors:
    """ANSI escape sequences used by the console formatter."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    GRAY = "\033[90m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "DEBUG": Colors.GRAY,
    "TRACE": Colors.GRAY,
}


def supports_color() -> bool:
    """Return True when ANSI colors should be emitted on stdout."""
    if os.getenv("NO_COLOR") or os.getenv("TTS_PREFETCH_NO_COLOR"):
        return False
    if os.getenv("FORCE_COLOR"):
        return True
    stream = sys.stdout
    return hasattr(stream, "isatty") and stream.isatty()


# Flipped by configure_logging(); tests may patch it directly
USE_COLORS = supports_color()


def colorize(text: str, color: str) -> str:
    """Wrap text in a color code when colors are enabled."""
    if not USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


def get_tag_color(tag: str) -> str:
    return _TAG_COLORS.get(tag.upper(), Colors.RESET)
