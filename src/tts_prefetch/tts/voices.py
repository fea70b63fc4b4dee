"""
Voice Catalog.

Maps speakers to synthesis voices and optional voice styles. The table
is a YAML (or JSON) list of voice models:

    voices:
      - voice: en-US-Ava
        characters: [narrator, player_female]
      - voice: en-US-Andrew
        characters: [player_male]
        style: calm

A gendered lookup tries ``<speaker>_male`` / ``<speaker>_female`` first.
Speakers without an entry get the default voice. A style other than
``default`` wraps the request text in SSML-like markup:

    <speak><sfx character="calm"> ...text... </sfx></speak>
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from tts_prefetch.core.config import Defaults, VoicesConfig
from tts_prefetch.core.logging import debug, get_logger, info
from tts_prefetch.tts.request import PrefetchRequest, VoiceParams

_LOG = get_logger("tts-prefetch.voices")

DEFAULT_STYLE = "default"
STYLE_PRE_TEXT = '<speak><sfx character="{style}"> '
STYLE_POST_TEXT = " </sfx></speak>"


@dataclass
class VoiceModel:
    """One voice and the speaker keys that use it."""
    voice: str
    characters: List[str] = field(default_factory=list)
    style: Optional[str] = None


class VoiceCatalog:
    """Speaker-to-voice lookup."""

    def __init__(self, models: Optional[List[VoiceModel]] = None, default_voice: str = Defaults.VOICES_DEFAULT_VOICE):
        self.default_voice = default_voice
        self._by_character: Dict[str, VoiceModel] = {}
        for model in models or []:
            for character in model.characters:
                self._by_character[character.lower()] = model

    @classmethod
    def from_config(cls, config: VoicesConfig) -> "VoiceCatalog":
        if not config.path:
            return cls(default_voice=config.default_voice)
        return load_voice_catalog(config.path, default_voice=config.default_voice)

    def __len__(self) -> int:
        return len(self._by_character)

    def find(self, speaker: Optional[str], is_male: Optional[bool] = None) -> Optional[VoiceModel]:
        if not speaker:
            return None
        speaker = speaker.lower()
        if is_male is not None:
            model = self._by_character.get(f"{speaker}_{'male' if is_male else 'female'}")
            if model is not None:
                return model
        return self._by_character.get(speaker)

    def voice_params_for(self, speaker: Optional[str], is_male: Optional[bool] = None) -> VoiceParams:
        model = self.find(speaker, is_male)
        if model is None:
            debug(_LOG, "default_voice_used", speaker=speaker, is_male=is_male)
            return VoiceParams(voice=self.default_voice)
        return VoiceParams(voice=model.voice)

    def style_wrapping(self, speaker: Optional[str], is_male: Optional[bool] = None) -> Tuple[str, str]:
        """(pre_text, post_text) for the speaker's style; empty if none."""
        model = self.find(speaker, is_male)
        if model is None or not model.style or model.style == DEFAULT_STYLE:
            return "", ""
        return STYLE_PRE_TEXT.format(style=model.style), STYLE_POST_TEXT

    def apply(self, request: PrefetchRequest, is_male: Optional[bool] = None) -> PrefetchRequest:
        """Fill in voice params and style markup for a request."""
        request.voice_params = self.voice_params_for(request.speaker, is_male)
        request.pre_text, request.post_text = self.style_wrapping(request.speaker, is_male)
        return request


def _parse_models(raw: Any) -> List[VoiceModel]:
    if isinstance(raw, dict):
        raw = raw.get("voices", [])
    if not isinstance(raw, list):
        raise ValueError("voice table must be a list or a mapping with a 'voices' list")

    models: List[VoiceModel] = []
    for entry in raw:
        if not isinstance(entry, dict) or "voice" not in entry:
            raise ValueError(f"voice entry needs a 'voice' key: {entry!r}")
        models.append(
            VoiceModel(
                voice=str(entry["voice"]),
                characters=[str(c) for c in entry.get("characters", []) or []],
                style=entry.get("style"),
            )
        )
    return models


def load_voice_catalog(path: str, default_voice: str = Defaults.VOICES_DEFAULT_VOICE) -> VoiceCatalog:
    """
    Load a voice table from YAML or JSON (JSON is valid YAML).

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the table is malformed.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"voice table not found: {p.resolve()}")
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []
    models = _parse_models(raw)
    info(_LOG, "voices_loaded", path=str(p), voices=len(models))
    return VoiceCatalog(models, default_voice=default_voice)
