"""
Accessibility settings: speech speed and voice gender.

A prefetch context holds one current AccessibilitySettings value. The
sequencer only hands out requests rendered for the current settings,
and cache queries without explicit markers resolve against it.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from tts_prefetch.core.config import Defaults


@dataclass(frozen=True)
class AccessibilitySettings:
    """
    Attributes:
        speed: Speech speed in percent (100 = normal).
        is_male: Voice gender, or None when unspecified.
    """
    speed: int = Defaults.ACCESSIBILITY_SPEED
    is_male: Optional[bool] = Defaults.ACCESSIBILITY_IS_MALE

    def matches(self, speed: int, is_male: Optional[bool]) -> bool:
        """
        True when content rendered at ``speed``/``is_male`` is wanted.

        Content without a gender matches any gender setting.
        """
        if speed != self.speed:
            return False
        return is_male is None or is_male == self.is_male


SettingsListener = Callable[[AccessibilitySettings], None]


class AccessibilityState:
    """Thread-safe holder for the current settings with change listeners."""

    def __init__(self, initial: Optional[AccessibilitySettings] = None):
        self._lock = threading.Lock()
        self._current = initial or AccessibilitySettings()
        self._listeners: List[SettingsListener] = []

    def get(self) -> AccessibilitySettings:
        with self._lock:
            return self._current

    def update(self, settings: AccessibilitySettings) -> bool:
        """Replace the settings. Returns True if they changed."""
        with self._lock:
            if settings == self._current:
                return False
            self._current = settings
            listeners = list(self._listeners)
        for listener in listeners:
            listener(settings)
        return True

    def subscribe(self, listener: SettingsListener) -> None:
        with self._lock:
            self._listeners.append(listener)
