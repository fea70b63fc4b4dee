"""
Synthesis requests.

A request is created when content is prepared, owned by the sequencer
while pending, then handed to the download scheduler, which dispatches
it exactly once per attempt. A rate-limited request goes back into the
sequencer unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class VoiceParams:
    """Voice selection sent with a synthesis request."""
    voice: str
    speed: int = 100

    def with_speed(self, speed: int) -> "VoiceParams":
        return replace(self, speed=speed)


@dataclass
class PrefetchRequest:
    """
    A pending synthesis request.

    Attributes:
        id: Content ID with accessibility markers applied.
        text: Speakable text (already cleaned).
        speaker: Speaker name, used for voice lookup.
        pre_text: Markup sent before the text (voice style wrapper).
        post_text: Markup sent after the text.
        voice_params: Resolved voice, None to use the service default.
    """
    id: str
    text: str
    speaker: Optional[str] = None
    pre_text: str = ""
    post_text: str = ""
    voice_params: Optional[VoiceParams] = None

    @property
    def full_text(self) -> str:
        return f"{self.pre_text}{self.text}{self.post_text}"
