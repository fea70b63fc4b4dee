"""
Prefetch Service: the owned context for one consumer.

PrefetchService wires the pipeline together and is the surface the
playback layer and the HTTP API talk to:

    prepare_clip(id, text, speaker)
        → clean text (markup out, silent content short-circuited)
        → segment if oversized (cluster registered first)
        → voice lookup → sequencer → download scheduler
        → synthesis service → clip cache
    get_clip / get_clip_cluster / is_ready / ...   (non-blocking reads)

Everything that used to be process-wide state (cache, in-flight
counters, high-priority pointer, accessibility settings) lives on the
instance, so several contexts can run side by side and tests start
from a clean slate. get_service()/reset_service() provide the one
instance the API uses.

Usage:
    service = PrefetchService(Settings(raw={}))
    service.prepare_clip("intro.1.1.1", "Welcome back.", "narrator")
    service.notify_interaction("intro.1.1.1")
    if service.is_ready("intro.1.1.1"):
        clip = service.get_clip("intro.1.1.1")
"""
from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple, Type

from tts_prefetch.core.config import PrefetchServiceConfig, Settings
from tts_prefetch.core.errors import ErrorCode, PrefetchError
from tts_prefetch.core.logging import error, get_logger, info, set_clip_id, verbose, warn
from tts_prefetch.core.metrics import PrefetchMetrics
from tts_prefetch.tts.accessibility import AccessibilitySettings, AccessibilityState
from tts_prefetch.tts.cache import CacheStats, ClipCache, ClipCluster
from tts_prefetch.tts.ids import (
    apply_accessibility_markers,
    get_gender,
    get_speed,
    parse_content_id,
    remove_accessibility_markers,
    validate_identity,
)
from tts_prefetch.tts.request import PrefetchRequest
from tts_prefetch.tts.scheduler import DownloadScheduler
from tts_prefetch.tts.segmenter import (
    contains_speech,
    is_oversized,
    remove_formatting,
    remove_omitted_characters,
    split,
)
from tts_prefetch.tts.sequencer import BaseSequencer, PriorityIdSequencer
from tts_prefetch.tts.synthesis import HttpSynthesisService, SynthesisService
from tts_prefetch.tts.voices import VoiceCatalog
from tts_prefetch.utils.audio import AudioClip

_LOG = get_logger("tts-prefetch.service")


class PrepareStatus:
    """Outcome of prepare_clip."""
    QUEUED = "queued"           # One request enqueued
    CLUSTERED = "clustered"     # Segmented; one request per chunk
    SILENT = "silent"           # Nothing speakable; stored as a silent clip
    DUPLICATE = "duplicate"     # Already received by this context
    DROPPED = "dropped"         # Segmentation left nothing to synthesize


@dataclass
class PrepareResult:
    clip_id: str
    status: str
    chunks: int = 0
    dropped_fragments: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PrefetchService:
    """
    Prefetch context: cache, sequencer, scheduler and settings for one consumer.

    Args:
        settings: Raw settings; validated into PrefetchServiceConfig.
        synthesis: Remote synthesis boundary (HTTP client from config if None).
        sequencer_cls: Ordering strategy; constructed with this context's
            accessibility settings provider.
        voices: Voice catalog (loaded from config if None).
        auto_start: Passed to the scheduler.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        synthesis: Optional[SynthesisService] = None,
        sequencer_cls: Type[BaseSequencer] = PriorityIdSequencer,
        voices: Optional[VoiceCatalog] = None,
        auto_start: bool = True,
    ):
        self._settings = settings or Settings(raw={})
        self._config = PrefetchServiceConfig.from_settings(self._settings)

        self._metrics = PrefetchMetrics()
        self._accessibility = AccessibilityState(
            AccessibilitySettings(
                speed=self._config.accessibility.speed,
                is_male=self._config.accessibility.is_male,
            )
        )
        self._cache = ClipCache(metrics=self._metrics)
        self._sequencer = sequencer_cls(self._accessibility.get)
        self._synthesis = synthesis or HttpSynthesisService.from_config(self._config.synthesis)
        self._voices = voices or VoiceCatalog.from_config(self._config.voices)
        self._scheduler = DownloadScheduler(
            sequencer=self._sequencer,
            cache=self._cache,
            synthesis=self._synthesis,
            config=self._config.scheduler,
            cache_settings=self._config.synthesis.cache_settings,
            metrics=self._metrics,
            default_voice=self._config.voices.default_voice,
            auto_start=auto_start,
        )

        self._player_speaker = self._config.voices.player_speaker.lower()
        self._max_chars = self._config.segmenter.max_chars
        self._preview_chars = self._config.logging.text_preview_chars

        self._lock = threading.Lock()
        self._received_ids: set[str] = set()

        self._accessibility.subscribe(self._on_settings_changed)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def config(self) -> PrefetchServiceConfig:
        return self._config

    @property
    def cache(self) -> ClipCache:
        return self._cache

    @property
    def sequencer(self) -> BaseSequencer:
        return self._sequencer

    @property
    def scheduler(self) -> DownloadScheduler:
        return self._scheduler

    @property
    def metrics(self) -> PrefetchMetrics:
        return self._metrics

    @property
    def accessibility_settings(self) -> AccessibilitySettings:
        return self._accessibility.get()

    # =========================================================================
    # Commands
    # =========================================================================

    def prepare_clip(
        self,
        clip_id: str,
        text: str,
        speaker: Optional[str] = None,
        has_markers_applied: bool = False,
        urgent: bool = False,
    ) -> PrepareResult:
        """
        Queue content for prefetching. Never blocks on synthesis.

        Args:
            clip_id: Content ID; bare identity unless has_markers_applied.
            text: Text as authored (markup allowed).
            speaker: Speaker name; the player speaker gets the current gender.
            has_markers_applied: ``clip_id`` already carries ``[speed=..]``.
            urgent: Fetch ahead of everything else if not ready.

        Raises:
            MalformedIdentityError: If the ID cannot be parsed.
        """
        marked_id = self._mark(clip_id, speaker, has_markers_applied)
        set_clip_id(marked_id)

        with self._lock:
            duplicate = marked_id in self._received_ids
            self._received_ids.add(marked_id)

        if duplicate:
            if urgent:
                self._make_urgent(marked_id)
            verbose(_LOG, "duplicate_prepare_ignored")
            return PrepareResult(marked_id, PrepareStatus.DUPLICATE)

        cleaned = remove_formatting(text or "")
        if not contains_speech(cleaned):
            warn(_LOG, "silent_content", preview=cleaned[:self._preview_chars])
            self._cache.store(marked_id, None)
            return PrepareResult(marked_id, PrepareStatus.SILENT)

        is_male = get_gender(marked_id)
        if is_oversized(cleaned, self._max_chars):
            result = self._prepare_cluster(marked_id, cleaned, speaker, is_male, wake=not urgent)
        else:
            request = PrefetchRequest(id=marked_id, text=remove_omitted_characters(cleaned).strip(), speaker=speaker)
            self._voices.apply(request, is_male)
            self._scheduler.enqueue(request, wake=not urgent)
            result = PrepareResult(marked_id, PrepareStatus.QUEUED, chunks=1)

        info(
            _LOG, "prepared",
            status=result.status,
            chunks=result.chunks,
            speaker=speaker,
            urgent=urgent,
        )
        if urgent:
            self._make_urgent(marked_id)
        return result

    def _prepare_cluster(
        self,
        marked_id: str,
        text: str,
        speaker: Optional[str],
        is_male: Optional[bool],
        wake: bool = True,
    ) -> PrepareResult:
        segments = split(marked_id, text, self._max_chars)
        if not segments.chunks:
            error(_LOG, "nothing_to_synthesize", code=ErrorCode.UNSPLITTABLE_TEXT, chars=len(text))
            return PrepareResult(marked_id, PrepareStatus.DROPPED, dropped_fragments=len(segments.dropped))

        self._cache.store_cluster(marked_id, len(segments.chunks))
        requests: List[PrefetchRequest] = []
        for chunk in segments.chunks:
            request = PrefetchRequest(id=chunk.chunk_id, text=chunk.text, speaker=speaker)
            requests.append(self._voices.apply(request, is_male))
        self._scheduler.enqueue_many(requests, wake=wake)
        return PrepareResult(
            marked_id,
            PrepareStatus.CLUSTERED,
            chunks=len(requests),
            dropped_fragments=len(segments.dropped),
        )

    def _mark(self, clip_id: str, speaker: Optional[str], has_markers_applied: bool) -> str:
        if has_markers_applied:
            validate_identity(remove_accessibility_markers(clip_id))
            parse_content_id(clip_id)
            return clip_id

        validate_identity(clip_id)
        parse_content_id(clip_id)
        current = self._accessibility.get()
        is_male = current.is_male if speaker and speaker.lower() == self._player_speaker else None
        return apply_accessibility_markers(clip_id, current.speed, is_male)

    def _make_urgent(self, marked_id: str) -> None:
        if self._scheduler.high_priority_id != marked_id:
            self._scheduler.high_priority_id = marked_id
        self._scheduler.wake()

    @property
    def high_priority_id(self) -> Optional[str]:
        return self._scheduler.high_priority_id

    @high_priority_id.setter
    def high_priority_id(self, clip_id: Optional[str]) -> None:
        self._scheduler.high_priority_id = clip_id

    def set_high_priority(self, clip_id: Optional[str], has_markers_applied: bool = False) -> Optional[str]:
        """
        Point the scheduler at ``clip_id``; returns the resolved pointer.

        Bare IDs resolve to the rendering this context received for the
        current settings, gendered first.
        """
        if not clip_id:
            self._scheduler.high_priority_id = None
            return None
        if has_markers_applied:
            target = clip_id
        else:
            current = self._accessibility.get()
            gendered = apply_accessibility_markers(clip_id, current.speed, current.is_male)
            with self._lock:
                known_gendered = gendered in self._received_ids
            target = gendered if known_gendered else apply_accessibility_markers(clip_id, current.speed)
        self._scheduler.high_priority_id = target
        return self._scheduler.high_priority_id

    def notify_interaction(self, clip_id: str) -> None:
        """The consumer reached ``clip_id``; reorder prefetching from there."""
        self._sequencer.notify_interaction(remove_accessibility_markers(clip_id))

    def update_accessibility_settings(self, settings: AccessibilitySettings) -> bool:
        """
        Switch speed/gender. Pending requests for the new settings become
        eligible; the rest wait.

        Raises:
            PrefetchError: If the speed is not one of the configured options.
        """
        if settings.speed not in self._config.accessibility.speed_options:
            raise PrefetchError(
                f"speed must be one of {self._config.accessibility.speed_options}, got {settings.speed}",
                ErrorCode.INVALID_INPUT,
                {"speed": settings.speed},
            )
        return self._accessibility.update(settings)

    def _on_settings_changed(self, settings: AccessibilitySettings) -> None:
        info(_LOG, "accessibility_changed", speed=settings.speed, is_male=settings.is_male)
        self._scheduler.wake()

    def start(self) -> bool:
        return self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.stop()

    def resume_after_restart(self) -> int:
        return self._scheduler.resume_after_restart()

    def shutdown(self) -> None:
        """Stop the scheduler and release the synthesis client."""
        self._scheduler.shutdown()
        self._synthesis.shutdown()
        info(_LOG, "service_shutdown")

    # =========================================================================
    # Queries
    # =========================================================================

    def _resolve(
        self,
        clip_id: str,
        has_markers_applied: bool,
        settings: Optional[AccessibilitySettings],
    ) -> Tuple[str, Optional[bool], int]:
        if has_markers_applied:
            return remove_accessibility_markers(clip_id), get_gender(clip_id), get_speed(clip_id)
        current = settings or self._accessibility.get()
        return clip_id, current.is_male, current.speed

    def get_clip(
        self,
        clip_id: str,
        has_markers_applied: bool = False,
        settings: Optional[AccessibilitySettings] = None,
    ) -> Optional[AudioClip]:
        base, is_male, speed = self._resolve(clip_id, has_markers_applied, settings)
        return self._cache.get_clip(base, is_male, speed=speed)

    def get_clip_cluster(
        self,
        clip_id: str,
        has_markers_applied: bool = False,
        settings: Optional[AccessibilitySettings] = None,
    ) -> Optional[List[Optional[AudioClip]]]:
        base, is_male, speed = self._resolve(clip_id, has_markers_applied, settings)
        return self._cache.get_clip_cluster(base, is_male, speed=speed)

    def get_cluster_object(
        self,
        clip_id: str,
        has_markers_applied: bool = False,
        settings: Optional[AccessibilitySettings] = None,
    ) -> Optional[ClipCluster]:
        base, is_male, speed = self._resolve(clip_id, has_markers_applied, settings)
        return self._cache.get_cluster_object(base, is_male, speed=speed)

    def is_cluster(
        self,
        clip_id: str,
        has_markers_applied: bool = False,
        settings: Optional[AccessibilitySettings] = None,
    ) -> bool:
        base, _, speed = self._resolve(clip_id, has_markers_applied, settings)
        return self._cache.is_cluster(base, speed=speed)

    def is_ready(
        self,
        clip_id: str,
        has_markers_applied: bool = False,
        settings: Optional[AccessibilitySettings] = None,
    ) -> bool:
        base, is_male, speed = self._resolve(clip_id, has_markers_applied, settings)
        return self._cache.is_ready(base, is_male, speed=speed)

    def is_cluster_available(
        self,
        clip_id: str,
        has_markers_applied: bool = False,
        settings: Optional[AccessibilitySettings] = None,
    ) -> bool:
        base, is_male, speed = self._resolve(clip_id, has_markers_applied, settings)
        return self._cache.is_cluster_available(base, is_male, speed=speed)

    # =========================================================================
    # Health
    # =========================================================================

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def stats(self) -> Dict[str, Any]:
        current = self._accessibility.get()
        with self._lock:
            received = len(self._received_ids)
        return {
            "scheduler": self._scheduler.stats().to_dict(),
            "cache": self._cache.stats().to_dict(),
            "accessibility": {"speed": current.speed, "is_male": current.is_male},
            "received_ids": received,
        }


# =============================================================================
# Global Service Instance
# =============================================================================

_service: Optional[PrefetchService] = None
_service_lock = threading.Lock()


def get_service(settings: Optional[Settings] = None) -> PrefetchService:
    """Get or create the process's PrefetchService (thread-safe, lazy)."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = PrefetchService(settings)
    return _service


def reset_service() -> None:
    """Shut down and forget the global instance (used by tests)."""
    global _service
    with _service_lock:
        if _service is not None:
            _service.shutdown()
        _service = None
