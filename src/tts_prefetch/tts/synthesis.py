"""
Remote Synthesis Service Boundary.

The download scheduler talks to speech synthesis through one call:

    submit(full_text, clip_id, voice_params, cache_settings, on_complete)

``on_complete(handle, error_text)`` fires exactly once per submission:

    - ``handle`` set, ``error_text`` empty: the service accepted the
      request. The audio payload may still be streaming; the handle
      fires its own completion listeners once the payload is complete,
      or once it fails (``handle.error_text`` set) after acceptance.
    - ``handle`` None, ``error_text`` containing a rate-limit marker
      (``429`` / ``too many requests``): retry later.
    - ``handle`` None, any other ``error_text``: permanent failure.

HttpSynthesisService implements this over HTTP with httpx on a small
thread pool, streaming the WAV body into the handle.

Example:
    >>> service = HttpSynthesisService("https://tts.example.com")
    >>> service.submit("Hello.", "[speed=100]1.1.1", VoiceParams("narrator"), {}, on_complete)
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from tts_prefetch.core.config import Defaults, SynthesisConfig
from tts_prefetch.core.errors import ErrorCode
from tts_prefetch.core.logging import error, get_logger, set_clip_id, verbose, warn
from tts_prefetch.tts.request import VoiceParams
from tts_prefetch.utils.audio import AudioClip, clip_from_wav_bytes

_LOG = get_logger("tts-prefetch.synthesis")

RATE_LIMIT_MARKERS = ("429", "too many requests")


def is_rate_limit_error(error_text: Optional[str]) -> bool:
    """True if a failure text reports rate limiting."""
    if not error_text:
        return False
    lowered = error_text.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


class SynthesisResult:
    """
    Handle to one accepted synthesis.

    The payload is appended as it streams in; ``finish()`` marks it
    complete and notifies listeners. ``fail(error_text)`` ends a payload
    that will never complete; listeners see it through ``error_text``.
    Listeners added after the end run immediately.
    """

    def __init__(self, clip_id: str):
        self.clip_id = clip_id
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._complete = threading.Event()
        self.error_text = ""
        self._listeners: List[Callable[["SynthesisResult"], None]] = []

    @classmethod
    def completed(cls, clip_id: str, payload: bytes) -> "SynthesisResult":
        """A handle whose payload is already complete."""
        result = cls(clip_id)
        result.append(payload)
        result.finish()
        return result

    @property
    def is_done(self) -> bool:
        """True once the payload either completed or failed."""
        return self._complete.is_set()

    @property
    def is_complete(self) -> bool:
        return self._complete.is_set() and not self.error_text

    @property
    def failed(self) -> bool:
        return bool(self.error_text)

    @property
    def payload(self) -> bytes:
        with self._lock:
            return bytes(self._buffer)

    def append(self, data: bytes) -> None:
        with self._lock:
            if self._complete.is_set():
                raise RuntimeError(f"payload for {self.clip_id!r} is already complete")
            self._buffer.extend(data)

    def finish(self) -> None:
        self._end("")

    def fail(self, error_text: str) -> None:
        """End the payload without completing it. No-op once done."""
        self._end(error_text or "payload failed")

    def _end(self, error_text: str) -> None:
        with self._lock:
            if self._complete.is_set():
                return
            self.error_text = error_text
            self._complete.set()
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(self)

    def add_completion_listener(self, listener: Callable[["SynthesisResult"], None]) -> None:
        with self._lock:
            if not self._complete.is_set():
                self._listeners.append(listener)
                return
        listener(self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._complete.wait(timeout)

    def extract_clip(self) -> Optional[AudioClip]:
        """
        Decode the completed payload into a trimmed clip.

        Raises:
            RuntimeError: If the payload is not complete yet or failed.
        """
        if self.failed:
            raise RuntimeError(f"payload for {self.clip_id!r} failed: {self.error_text}")
        if not self.is_complete:
            raise RuntimeError(f"payload for {self.clip_id!r} is not complete")
        return clip_from_wav_bytes(self.clip_id, self.payload)


CompletionCallback = Callable[[Optional[SynthesisResult], str], None]


class SynthesisService(ABC):
    """Remote speech synthesis, as seen by the download scheduler."""

    @abstractmethod
    def submit(
        self,
        full_text: str,
        clip_id: str,
        voice_params: VoiceParams,
        cache_settings: Mapping[str, Any],
        on_complete: CompletionCallback,
    ) -> None:
        """Start a synthesis; must not block on the remote call."""

    def shutdown(self) -> None:
        """Release connections and worker threads."""


class HttpSynthesisService(SynthesisService):
    """
    Synthesis over HTTP.

    POSTs ``{"text", "id", "voice", "speed", "cache"}`` as JSON and
    expects a WAV body. Requests run on a thread pool so ``submit``
    returns immediately.
    """

    def __init__(
        self,
        base_url: str = Defaults.SYNTHESIS_BASE_URL,
        endpoint: str = Defaults.SYNTHESIS_ENDPOINT,
        api_key: Optional[str] = None,
        timeout_s: float = Defaults.SYNTHESIS_TIMEOUT_S,
        max_workers: int = Defaults.SYNTHESIS_MAX_WORKERS,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._endpoint = endpoint
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout_s, headers=headers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tts-prefetch-synth")

    @classmethod
    def from_config(cls, config: SynthesisConfig) -> "HttpSynthesisService":
        return cls(
            base_url=config.base_url,
            endpoint=config.endpoint,
            api_key=config.api_key,
            timeout_s=config.timeout_s,
            max_workers=config.max_workers,
        )

    def submit(
        self,
        full_text: str,
        clip_id: str,
        voice_params: VoiceParams,
        cache_settings: Mapping[str, Any],
        on_complete: CompletionCallback,
    ) -> None:
        payload: Dict[str, Any] = {
            "text": full_text,
            "id": clip_id,
            "voice": voice_params.voice,
            "speed": voice_params.speed,
            "cache": dict(cache_settings or {}),
        }
        self._executor.submit(self._run, clip_id, payload, on_complete)

    def _run(self, clip_id: str, payload: Dict[str, Any], on_complete: CompletionCallback) -> None:
        set_clip_id(clip_id)
        handle: Optional[SynthesisResult] = None
        reported = False
        try:
            with self._client.stream("POST", self._endpoint, json=payload) as response:
                if response.status_code == 429:
                    response.read()
                    warn(_LOG, "synthesis_rate_limited", code=ErrorCode.RATE_LIMITED)
                    reported = True
                    on_complete(None, "HTTP 429 Too Many Requests")
                    return
                if response.status_code >= 400:
                    body = response.read().decode("utf-8", errors="replace")
                    reported = True
                    on_complete(None, f"HTTP {response.status_code}: {body[:200]}")
                    return

                handle = SynthesisResult(clip_id)
                reported = True
                on_complete(handle, "")
                for data in response.iter_bytes():
                    handle.append(data)
                handle.finish()
                verbose(_LOG, "payload_complete", bytes=len(handle.payload))
        except Exception as exc:
            error_text = f"{type(exc).__name__}: {exc}"
            if not reported:
                on_complete(None, error_text)
            elif handle is not None and not handle.is_done:
                # Accepted but the body was cut off
                error(_LOG, "payload_interrupted", code=ErrorCode.SYNTHESIS_FAILED, error=error_text)
                handle.fail(error_text)
            else:
                error(_LOG, "completion_callback_failed", code=ErrorCode.INTERNAL_ERROR, error=error_text)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()
