"""Shared fixtures: a scripted synthesis service and WAV payloads."""
from __future__ import annotations

import threading
from typing import Any, Callable, List, Mapping, Optional

import numpy as np
import pytest

from tts_prefetch.tts.request import VoiceParams
from tts_prefetch.tts.synthesis import SynthesisResult, SynthesisService
from tts_prefetch.utils.audio import wav_bytes_from_float32

SAMPLE_RATE = 16000


def make_wav(seconds: float = 0.1, amplitude: float = 0.25, pad: int = 0) -> bytes:
    """Constant-tone WAV with ``pad`` zero samples on both ends."""
    tone = np.full(int(SAMPLE_RATE * seconds), amplitude, dtype=np.float32)
    zeros = np.zeros(pad, dtype=np.float32)
    return wav_bytes_from_float32(np.concatenate([zeros, tone, zeros]), SAMPLE_RATE)


class Submission:
    def __init__(self, full_text, clip_id, voice_params, cache_settings, on_complete):
        self.full_text = full_text
        self.clip_id = clip_id
        self.voice_params = voice_params
        self.cache_settings = cache_settings
        self.on_complete = on_complete
        self.handle: Optional[SynthesisResult] = None


class FakeSynthesisService(SynthesisService):
    """
    Records submissions and answers them when told to.

    With ``auto_accept`` every submission is accepted and completed with
    ``payload`` inside submit(), so threaded tests need no scripting.
    """

    def __init__(self, auto_accept: bool = False, payload: Optional[bytes] = None):
        self.auto_accept = auto_accept
        self.payload = payload if payload is not None else make_wav()
        self.submissions: List[Submission] = []
        self.waiting: List[Submission] = []
        self.shut_down = False
        self._lock = threading.Lock()

    def submit(
        self,
        full_text: str,
        clip_id: str,
        voice_params: VoiceParams,
        cache_settings: Mapping[str, Any],
        on_complete: Callable,
    ) -> None:
        sub = Submission(full_text, clip_id, voice_params, cache_settings, on_complete)
        with self._lock:
            self.submissions.append(sub)
            if not self.auto_accept:
                self.waiting.append(sub)
        if self.auto_accept:
            on_complete(SynthesisResult.completed(clip_id, self.payload), "")

    @property
    def submitted_ids(self) -> List[str]:
        with self._lock:
            return [s.clip_id for s in self.submissions]

    def _take(self, clip_id: Optional[str]) -> Submission:
        with self._lock:
            for i, sub in enumerate(self.waiting):
                if clip_id is None or sub.clip_id == clip_id:
                    return self.waiting.pop(i)
        raise AssertionError(f"no waiting submission for {clip_id!r}")

    def accept(self, clip_id: Optional[str] = None, payload: Optional[bytes] = None,
               finish: bool = True) -> Submission:
        sub = self._take(clip_id)
        sub.handle = SynthesisResult(sub.clip_id)
        sub.on_complete(sub.handle, "")
        if finish:
            sub.handle.append(self.payload if payload is None else payload)
            sub.handle.finish()
        return sub

    def rate_limit(self, clip_id: Optional[str] = None) -> Submission:
        sub = self._take(clip_id)
        sub.on_complete(None, "HTTP 429 Too Many Requests")
        return sub

    def fail(self, clip_id: Optional[str] = None, text: str = "HTTP 500: internal error") -> Submission:
        sub = self._take(clip_id)
        sub.on_complete(None, text)
        return sub

    def shutdown(self) -> None:
        self.shut_down = True


@pytest.fixture
def wav_payload() -> bytes:
    return make_wav()


@pytest.fixture
def fake_synthesis() -> FakeSynthesisService:
    return FakeSynthesisService()


@pytest.fixture
def auto_synthesis() -> FakeSynthesisService:
    return FakeSynthesisService(auto_accept=True)


@pytest.fixture
def make_service(fake_synthesis):
    """Factory for a PrefetchService driven by hand (no loop thread)."""
    from tts_prefetch.core.config import Settings
    from tts_prefetch.services.prefetch_service import PrefetchService

    created = []

    def _make(raw: Optional[dict] = None, synthesis: Optional[SynthesisService] = None,
              auto_start: bool = False, **kwargs) -> PrefetchService:
        service = PrefetchService(
            Settings(raw=raw or {}),
            synthesis=synthesis or fake_synthesis,
            auto_start=auto_start,
            **kwargs,
        )
        created.append(service)
        return service

    yield _make
    for service in created:
        service.shutdown()
