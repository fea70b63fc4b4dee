"""
Configuration Management for tts-prefetch.

Configuration Hierarchy (highest priority first):
    1. Environment variables (TTS_PREFETCH_SYNTHESIS_URL, TTS_PREFETCH_API_KEY, ...)
    2. YAML config file (config/settings.yaml, or $TTS_PREFETCH_SETTINGS)
    3. Defaults class values

Example settings.yaml:
    segmenter:
      max_chars: 200

    scheduler:
      request_delay_s: 1.0
      delay_increment_s: 0.1
      rate_limit_cooldown_s: 2.0

    synthesis:
      base_url: https://tts.example.com
      endpoint: /v1/tts

    accessibility:
      speed: 100
      is_male: true

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import yaml


class ConfigValidationError(Exception):
    """Raised when a configuration value is outside acceptable bounds."""
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Segmenter: maximum characters per synthesis request
        - Scheduler: dispatch pacing and rate-limit backoff
        - Synthesis: remote service endpoint
        - Accessibility: speech speed and voice gender
        - Voices: voice table and speaker routing
        - Logging: log level and previews
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Segmenter
    # ─────────────────────────────────────────────────────────────────────────
    SEGMENTER_MAX_CHARS = 200           # Longest text sent in one request

    # ─────────────────────────────────────────────────────────────────────────
    # Scheduler
    # ─────────────────────────────────────────────────────────────────────────
    SCHEDULER_REQUEST_DELAY_S = 1.0     # Pause between dispatches
    SCHEDULER_DELAY_INCREMENT_S = 0.1   # Added to the pause on each rate-limit episode
    SCHEDULER_RATE_LIMIT_COOLDOWN_S = 2.0   # Wait after draining in-flight requests
    SCHEDULER_STOP_TIMEOUT_S = 5.0      # Join timeout for the loop thread

    # ─────────────────────────────────────────────────────────────────────────
    # Synthesis service
    # ─────────────────────────────────────────────────────────────────────────
    SYNTHESIS_BASE_URL = "http://localhost:8000"
    SYNTHESIS_ENDPOINT = "/v1/tts"
    SYNTHESIS_TIMEOUT_S = 30.0
    SYNTHESIS_MAX_WORKERS = 4

    # ─────────────────────────────────────────────────────────────────────────
    # Accessibility
    # ─────────────────────────────────────────────────────────────────────────
    ACCESSIBILITY_SPEED = 100
    ACCESSIBILITY_SPEED_OPTIONS = (50, 75, 100, 125, 150, 200)
    ACCESSIBILITY_IS_MALE = True

    # ─────────────────────────────────────────────────────────────────────────
    # Voices
    # ─────────────────────────────────────────────────────────────────────────
    VOICES_DEFAULT_VOICE = "default"
    VOICES_PLAYER_SPEAKER = "player"    # Only this speaker gets gendered voices

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class SegmenterConfig:
    """Text longer than ``max_chars`` is split into a chunk cluster."""
    max_chars: int = Defaults.SEGMENTER_MAX_CHARS


@dataclass
class SchedulerConfig:
    """
    Download scheduler pacing.

    ``request_delay_s`` is the starting gap between dispatches. It only
    ever grows, by ``delay_increment_s`` per rate-limit episode.
    """
    request_delay_s: float = Defaults.SCHEDULER_REQUEST_DELAY_S
    delay_increment_s: float = Defaults.SCHEDULER_DELAY_INCREMENT_S
    rate_limit_cooldown_s: float = Defaults.SCHEDULER_RATE_LIMIT_COOLDOWN_S
    stop_timeout_s: float = Defaults.SCHEDULER_STOP_TIMEOUT_S


@dataclass
class SynthesisConfig:
    """Remote synthesis endpoint."""
    base_url: str = Defaults.SYNTHESIS_BASE_URL
    endpoint: str = Defaults.SYNTHESIS_ENDPOINT
    api_key: Optional[str] = None
    timeout_s: float = Defaults.SYNTHESIS_TIMEOUT_S
    max_workers: int = Defaults.SYNTHESIS_MAX_WORKERS
    cache_settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AccessibilityConfig:
    """Initial accessibility settings for a new prefetch context."""
    speed: int = Defaults.ACCESSIBILITY_SPEED
    speed_options: List[int] = field(default_factory=lambda: list(Defaults.ACCESSIBILITY_SPEED_OPTIONS))
    is_male: bool = Defaults.ACCESSIBILITY_IS_MALE


@dataclass
class VoicesConfig:
    path: Optional[str] = None
    default_voice: str = Defaults.VOICES_DEFAULT_VOICE
    player_speaker: str = Defaults.VOICES_PLAYER_SPEAKER


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: startup, shutdown, dropped requests
        2 = NORMAL: prepare/dispatch/store lifecycle (default)
        3 = VERBOSE: sequencer and drain decisions
        4 = DEBUG: per-ID parsing and cache lookups
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class PrefetchServiceConfig:
    """
    Validated configuration for PrefetchService.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = PrefetchServiceConfig.from_settings(settings)
        print(config.scheduler.request_delay_s)
    """
    segmenter: SegmenterConfig = field(default_factory=SegmenterConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    accessibility: AccessibilityConfig = field(default_factory=AccessibilityConfig)
    voices: VoicesConfig = field(default_factory=VoicesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PrefetchServiceConfig":
        """
        Build a validated config from raw settings.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Segmenter
        # ─────────────────────────────────────────────────────────────────────
        segmenter_raw = raw.get("segmenter", {}) or {}
        segmenter = SegmenterConfig(
            max_chars=int(segmenter_raw.get("max_chars", Defaults.SEGMENTER_MAX_CHARS)),
        )
        cls._validate_positive("segmenter.max_chars", segmenter.max_chars)

        # ─────────────────────────────────────────────────────────────────────
        # Scheduler
        # ─────────────────────────────────────────────────────────────────────
        scheduler_raw = raw.get("scheduler", {}) or {}
        scheduler = SchedulerConfig(
            request_delay_s=float(scheduler_raw.get("request_delay_s", Defaults.SCHEDULER_REQUEST_DELAY_S)),
            delay_increment_s=float(scheduler_raw.get("delay_increment_s", Defaults.SCHEDULER_DELAY_INCREMENT_S)),
            rate_limit_cooldown_s=float(
                scheduler_raw.get("rate_limit_cooldown_s", Defaults.SCHEDULER_RATE_LIMIT_COOLDOWN_S)
            ),
            stop_timeout_s=float(scheduler_raw.get("stop_timeout_s", Defaults.SCHEDULER_STOP_TIMEOUT_S)),
        )
        cls._validate_non_negative("scheduler.request_delay_s", scheduler.request_delay_s)
        cls._validate_positive("scheduler.delay_increment_s", scheduler.delay_increment_s)
        cls._validate_non_negative("scheduler.rate_limit_cooldown_s", scheduler.rate_limit_cooldown_s)
        cls._validate_positive("scheduler.stop_timeout_s", scheduler.stop_timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Synthesis (with environment variable overrides)
        # ─────────────────────────────────────────────────────────────────────
        synthesis_raw = raw.get("synthesis", {}) or {}
        synthesis = SynthesisConfig(
            base_url=os.getenv("TTS_PREFETCH_SYNTHESIS_URL")
                or str(synthesis_raw.get("base_url", Defaults.SYNTHESIS_BASE_URL)),
            endpoint=str(synthesis_raw.get("endpoint", Defaults.SYNTHESIS_ENDPOINT)),
            api_key=os.getenv("TTS_PREFETCH_API_KEY") or synthesis_raw.get("api_key"),
            timeout_s=float(synthesis_raw.get("timeout_s", Defaults.SYNTHESIS_TIMEOUT_S)),
            max_workers=int(synthesis_raw.get("max_workers", Defaults.SYNTHESIS_MAX_WORKERS)),
            cache_settings=dict(synthesis_raw.get("cache_settings", {}) or {}),
        )
        cls._validate_positive("synthesis.timeout_s", synthesis.timeout_s)
        cls._validate_positive("synthesis.max_workers", synthesis.max_workers)

        # ─────────────────────────────────────────────────────────────────────
        # Accessibility
        # ─────────────────────────────────────────────────────────────────────
        accessibility_raw = raw.get("accessibility", {}) or {}
        accessibility = AccessibilityConfig(
            speed=int(accessibility_raw.get("speed", Defaults.ACCESSIBILITY_SPEED)),
            speed_options=[
                int(s) for s in accessibility_raw.get("speed_options", Defaults.ACCESSIBILITY_SPEED_OPTIONS)
            ],
            is_male=bool(accessibility_raw.get("is_male", Defaults.ACCESSIBILITY_IS_MALE)),
        )
        for option in accessibility.speed_options:
            cls._validate_positive("accessibility.speed_options", option)
        if accessibility.speed not in accessibility.speed_options:
            raise ConfigValidationError(
                f"accessibility.speed must be one of {accessibility.speed_options}, got {accessibility.speed}"
            )

        # ─────────────────────────────────────────────────────────────────────
        # Voices
        # ─────────────────────────────────────────────────────────────────────
        voices_raw = raw.get("voices", {}) or {}
        voices = VoicesConfig(
            path=voices_raw.get("path"),
            default_voice=str(voices_raw.get("default_voice", Defaults.VOICES_DEFAULT_VOICE)),
            player_speaker=str(voices_raw.get("player_speaker", Defaults.VOICES_PLAYER_SPEAKER)),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        from tts_prefetch.core.logging.levels import coerce_level

        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)
        if isinstance(log_level_raw, str):
            log_level = int(coerce_level(log_level_raw))
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            segmenter=segmenter,
            scheduler=scheduler,
            synthesis=synthesis,
            accessibility=accessibility,
            voices=voices,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    Use ``get_service_config()`` for the validated, typed view.
    """
    raw: Dict[str, Any]

    @property
    def max_chars(self) -> int:
        return int((self.raw.get("segmenter", {}) or {}).get("max_chars", Defaults.SEGMENTER_MAX_CHARS))

    @property
    def speed(self) -> int:
        """Initial speech speed."""
        return int((self.raw.get("accessibility", {}) or {}).get("speed", Defaults.ACCESSIBILITY_SPEED))

    @property
    def is_male(self) -> bool:
        return bool((self.raw.get("accessibility", {}) or {}).get("is_male", Defaults.ACCESSIBILITY_IS_MALE))

    @property
    def synthesis_url(self) -> str:
        return str((self.raw.get("synthesis", {}) or {}).get("base_url", Defaults.SYNTHESIS_BASE_URL))

    def get_service_config(self) -> PrefetchServiceConfig:
        """
        Raises:
            ConfigValidationError: If validation fails.
        """
        return PrefetchServiceConfig.from_settings(self)


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
        ValueError: If the file does not contain a mapping.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"settings file must contain a mapping: {p}")

    return Settings(raw=raw)


def settings_path() -> str:
    """Settings file location, honouring TTS_PREFETCH_SETTINGS."""
    return os.getenv("TTS_PREFETCH_SETTINGS", "config/settings.yaml")
