"""
Visible-content playlist.

The upstream UI knows which content is on screen and how long to pause
after each item. VisibleContentPlaylist turns that list of
``(clip_id, gap_s)`` pairs into playable ``(clip, end_delay_s)`` entries
for whatever the prefetch context has ready:

    - single clips contribute one entry (None for silent content)
    - clusters contribute their available chunks in order
    - the gap follows the last clip of an item, never the final item

The visible list is read once and kept until clear() is called (the UI
changed); readiness is re-checked on every build() until all items are
complete.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from tts_prefetch.core.logging import debug, get_logger, verbose
from tts_prefetch.services.prefetch_service import PrefetchService
from tts_prefetch.utils.audio import AudioClip

_LOG = get_logger("tts-prefetch.playlist")

VisibleSource = Callable[[], Sequence[Tuple[str, float]]]


@dataclass(frozen=True)
class PlaylistEntry:
    clip_id: str
    clip: Optional[AudioClip]
    end_delay_s: float = 0.0


class VisibleContentPlaylist:
    """
    Playable audio for the content currently visible upstream.

    Args:
        service: Prefetch context the clips come from.
        visible_source: Returns ``[(clip_id, gap_s), ...]`` for the visible
            content, bare IDs resolved against the current settings.
    """

    def __init__(self, service: PrefetchService, visible_source: VisibleSource):
        self._service = service
        self._visible_source = visible_source
        self._visible: Optional[List[Tuple[str, float]]] = None
        self._complete = False

    @property
    def is_complete(self) -> bool:
        """Every visible item was fully available at the last build()."""
        return self._complete

    def clear(self) -> None:
        """Forget the visible list; the next build() reads it again."""
        self._visible = None
        self._complete = False

    def build(self) -> List[PlaylistEntry]:
        if self._visible is None:
            self._visible = list(self._visible_source())

        items: List[Tuple[str, List[Optional[AudioClip]], float]] = []
        complete = 0
        for clip_id, gap_s in self._visible:
            clips, item_complete = self._clips_for(clip_id)
            if clips is None:
                debug(_LOG, "playlist_item_not_ready", clip_id=clip_id)
                continue
            complete += int(item_complete)
            items.append((clip_id, clips, gap_s))

        self._complete = complete == len(self._visible)

        entries: List[PlaylistEntry] = []
        for n, (clip_id, clips, gap_s) in enumerate(items):
            last_item = n == len(items) - 1
            for i, clip in enumerate(clips):
                delay = gap_s if i == len(clips) - 1 and not last_item else 0.0
                entries.append(PlaylistEntry(clip_id, clip, delay))

        verbose(_LOG, "playlist_built", items=len(items), entries=len(entries), complete=self._complete)
        return entries

    def _clips_for(self, clip_id: str) -> Tuple[Optional[List[Optional[AudioClip]]], bool]:
        service = self._service
        if service.is_cluster(clip_id):
            if not service.is_cluster_available(clip_id):
                return None, False
            cluster = service.get_cluster_object(clip_id)
            if cluster is None:
                return None, False
            return cluster.clips(), cluster.is_complete
        if not service.is_ready(clip_id):
            return None, False
        return [service.get_clip(clip_id)], True
