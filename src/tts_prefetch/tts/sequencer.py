"""
Request Sequencers.

A sequencer owns the pending requests and decides which one the
download scheduler fetches next. The scheduler only uses the
BaseSequencer contract, so ordering strategies are interchangeable:

    - PriorityIdSequencer (default): orders by content ID, relative to
      where the consumer currently is.
    - FifoSequencer: arrival order.

Both only hand out requests rendered for the current accessibility
settings (speed, and gender when the ID specifies one). Requests for
other settings stay pending until the settings change back.

Default ordering:
    IDs are ordered by speed, then their integer order tuple (a prefix
    sorts first), then tag, then chunk index, then gender (unspecified
    first). The consumer reports interactions via notify_interaction(),
    which moves a "last consumed" pointer. The next request is the first
    matching entry after that pointer; when nothing after it is left,
    the scan wraps to the first matching entry, so revisited content is
    still fetched.

Thread Safety:
    enqueue and every dequeue run under one lock, so a request is
    never observed half-removed.

Example:
    >>> seq = PriorityIdSequencer(lambda: AccessibilitySettings(speed=100, is_male=True))
    >>> seq.enqueue(PrefetchRequest("[speed=100]1.2.1", "Later."))
    >>> seq.enqueue(PrefetchRequest("[speed=100]1.1.1", "First."))
    >>> seq.dequeue_highest_priority().id
    '[speed=100]1.1.1'
"""
from __future__ import annotations

import bisect
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

from tts_prefetch.core.logging import debug, get_logger, verbose, warn
from tts_prefetch.tts.accessibility import AccessibilitySettings
from tts_prefetch.tts.ids import apply_accessibility_markers, parse_content_id
from tts_prefetch.tts.request import PrefetchRequest

_LOG = get_logger("tts-prefetch.sequencer")

SettingsProvider = Callable[[], AccessibilitySettings]


class BaseSequencer(ABC):
    """Contract between the download scheduler and an ordering strategy."""

    def __init__(self, settings_provider: Optional[SettingsProvider] = None):
        self._settings_provider = settings_provider or AccessibilitySettings
        self._lock = threading.Lock()

    @abstractmethod
    def enqueue(self, request: PrefetchRequest) -> bool:
        """Add a request. Returns False if its ID is already pending."""

    @abstractmethod
    def dequeue_highest_priority(self) -> Optional[PrefetchRequest]:
        """Remove and return the next request, or None if none matches."""

    @abstractmethod
    def dequeue_by_id(self, clip_id: str) -> Optional[PrefetchRequest]:
        """Remove and return a specific pending request, or None."""

    @abstractmethod
    def count(self) -> int:
        """Number of pending requests (all settings)."""

    @abstractmethod
    def contains(self, clip_id: str) -> bool:
        ...

    def notify_interaction(self, clip_id: str) -> None:
        """The consumer reached ``clip_id``. Ignored by default."""

    def __len__(self) -> int:
        return self.count()

    def _matches_current(self, clip_id: str) -> bool:
        parsed = parse_content_id(clip_id)
        return self._settings_provider().matches(parsed.speed, parsed.is_male)


class PriorityIdSequencer(BaseSequencer):
    """
    Orders pending requests by content ID with a cyclic consumption pointer.

    Entries are kept sorted as ``(sort_key, id)`` pairs; sort keys come
    from the cached ID parser.
    """

    def __init__(self, settings_provider: Optional[SettingsProvider] = None):
        super().__init__(settings_provider)
        self._order: List[Tuple[tuple, str]] = []
        self._requests: Dict[str, PrefetchRequest] = {}
        self._last_used_id: Optional[str] = None

    @property
    def last_used_id(self) -> Optional[str]:
        with self._lock:
            return self._last_used_id

    def enqueue(self, request: PrefetchRequest) -> bool:
        key = parse_content_id(request.id).sort_key
        with self._lock:
            if request.id in self._requests:
                warn(_LOG, "duplicate_enqueue_ignored", clip_id=request.id)
                return False
            self._requests[request.id] = request
            bisect.insort(self._order, (key, request.id))
            pending = len(self._order)
        debug(_LOG, "enqueued", clip_id=request.id, pending=pending)
        return True

    def dequeue_highest_priority(self) -> Optional[PrefetchRequest]:
        with self._lock:
            if not self._order:
                return None
            index = self._select_locked()
            if index is None:
                verbose(_LOG, "no_matching_request", pending=len(self._order))
                return None
            _, clip_id = self._order.pop(index)
            return self._requests.pop(clip_id)

    def _select_locked(self) -> Optional[int]:
        matching = [i for i, (_, clip_id) in enumerate(self._order) if self._matches_current(clip_id)]
        if not matching:
            return None
        if self._last_used_id is None:
            return matching[0]

        # Position only (speed, order, tag): chunks and gendered renderings of
        # the consumed content count as consumed too
        pointer = parse_content_id(self._last_used_id).sort_key[:3]
        for i in matching:
            if self._order[i][0][:3] > pointer:
                return i

        # Nothing left after the pointer: wrap to the earliest match
        verbose(_LOG, "sequencer_wrapped", last_used=self._last_used_id)
        return matching[0]

    def dequeue_by_id(self, clip_id: str) -> Optional[PrefetchRequest]:
        with self._lock:
            request = self._requests.pop(clip_id, None)
            if request is None:
                return None
            entry = (parse_content_id(clip_id).sort_key, clip_id)
            index = bisect.bisect_left(self._order, entry)
            del self._order[index]
            return request

    def count(self) -> int:
        with self._lock:
            return len(self._order)

    def contains(self, clip_id: str) -> bool:
        with self._lock:
            return clip_id in self._requests

    def pending_ids(self) -> List[str]:
        """Pending IDs in comparator order."""
        with self._lock:
            return [clip_id for _, clip_id in self._order]

    def notify_interaction(self, clip_id: str) -> None:
        """
        Move the consumption pointer to ``clip_id``.

        The pointer is stored with the current speed so it compares
        against pending entries of the same rendering.
        """
        speed = self._settings_provider().speed
        pointer = apply_accessibility_markers(clip_id, speed)
        parse_content_id(pointer)
        with self._lock:
            self._last_used_id = pointer
        verbose(_LOG, "pointer_moved", clip_id=pointer)


class FifoSequencer(BaseSequencer):
    """Hands out matching requests in arrival order; ignores interactions."""

    def __init__(self, settings_provider: Optional[SettingsProvider] = None):
        super().__init__(settings_provider)
        self._requests: "OrderedDict[str, PrefetchRequest]" = OrderedDict()

    def enqueue(self, request: PrefetchRequest) -> bool:
        parse_content_id(request.id)
        with self._lock:
            if request.id in self._requests:
                warn(_LOG, "duplicate_enqueue_ignored", clip_id=request.id)
                return False
            self._requests[request.id] = request
            return True

    def dequeue_highest_priority(self) -> Optional[PrefetchRequest]:
        with self._lock:
            for clip_id in self._requests:
                if self._matches_current(clip_id):
                    return self._requests.pop(clip_id)
            return None

    def dequeue_by_id(self, clip_id: str) -> Optional[PrefetchRequest]:
        with self._lock:
            return self._requests.pop(clip_id, None)

    def count(self) -> int:
        with self._lock:
            return len(self._requests)

    def contains(self, clip_id: str) -> bool:
        with self._lock:
            return clip_id in self._requests
