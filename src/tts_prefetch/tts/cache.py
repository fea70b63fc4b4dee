"""
Clip Cache for Prefetched Audio.

Finished audio is stored by rendering speed, then base identity (the ID
with its accessibility layer stripped), then gender:

    speed -> base_id -> single clip            (ungendered content)
                      | {True: clip, False: clip}
    speed -> base_id -> single cluster | {True: cluster, False: cluster}

Ungendered entries answer queries for either gender. Gendered entries
only answer queries for their own gender.

The cache is a prefetch store, not an LRU: it grows for the lifetime of
its owning context, and each (identity, gender) key is written once.
A second write for the same key is ignored.

Clusters:
    Segmented text produces a cluster of chunks ``<id>_1 .. <id>_N``.
    ``store_cluster(id, N)`` must run before any chunk is stored. It
    returns a ClusterHandle, the capability used to store chunks.
    ``store()`` of a chunk ID routes through the registered cluster and
    raises ClusterRegistrationError when there is none.

``None`` is a valid clip: it marks content that is deliberately silent
(an ellipsis, a line with only markup). ``is_ready`` is True for it.

Example:
    >>> cache = ClipCache()
    >>> handle = cache.store_cluster("[speed=100]1.2.3", 2)
    >>> handle.store_chunk("[speed=100]1.2.3_2", clip_b)
    >>> cache.store("[speed=100]1.2.3_1", clip_a)
    >>> cache.is_ready("1.2.3", speed=100)
    True
    >>> cache.get_clip_cluster("1.2.3", speed=100)
    [clip_a, clip_b]
"""
from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from tts_prefetch.core.config import Defaults
from tts_prefetch.core.errors import ClusterRegistrationError, ErrorCode
from tts_prefetch.core.logging import debug, get_logger, info, warn
from tts_prefetch.core.metrics import PrefetchMetrics
from tts_prefetch.tts.ids import (
    chunk_id,
    chunk_index_of,
    cluster_id_of,
    get_gender,
    get_speed,
    is_chunk_id,
    remove_accessibility_markers,
)
from tts_prefetch.utils.audio import AudioClip

_LOG = get_logger("tts-prefetch.cache")

T = TypeVar("T")


class _GenderSlots(Generic[T]):
    """Values stored under one base identity, keyed by gender (None = any)."""

    def __init__(self) -> None:
        self._values: Dict[Optional[bool], T] = {}

    def put(self, is_male: Optional[bool], value: T) -> bool:
        if is_male in self._values:
            return False
        self._values[is_male] = value
        return True

    def exact(self, is_male: Optional[bool]) -> Tuple[bool, Optional[T]]:
        if is_male in self._values:
            return True, self._values[is_male]
        return False, None

    def lookup(self, is_male: Optional[bool]) -> Tuple[bool, Optional[T]]:
        if is_male is not None and is_male in self._values:
            return True, self._values[is_male]
        if None in self._values:
            return True, self._values[None]
        return False, None

    def values(self) -> Iterable[T]:
        return self._values.values()


class ClipCluster:
    """
    Ordered slots for the chunks of one segmented text.

    Slots are 1-based and filled in any arrival order; ``clips`` always
    returns them in slot order.
    """

    def __init__(self, cluster_id: str, expected_count: int):
        self.cluster_id = cluster_id
        self.expected_count = int(expected_count)
        self._slots: Dict[int, Optional[AudioClip]] = {}

    def is_part_of_cluster(self, clip_id: str) -> bool:
        return cluster_id_of(clip_id) == self.cluster_id and chunk_index_of(clip_id) is not None

    @property
    def clip_count(self) -> int:
        return len(self._slots)

    @property
    def is_complete(self) -> bool:
        return len(self._slots) >= self.expected_count

    @property
    def is_available(self) -> bool:
        return len(self._slots) > 0

    def clips(self) -> List[Optional[AudioClip]]:
        """Stored clips in slot order (gaps skipped while incomplete)."""
        return [self._slots[i] for i in sorted(self._slots)]

    def chunk_at(self, index: int) -> Tuple[bool, Optional[AudioClip]]:
        """(stored, clip) for 1-based slot ``index``."""
        if index in self._slots:
            return True, self._slots[index]
        return False, None

    def missing_indices(self) -> List[int]:
        return [i for i in range(1, self.expected_count + 1) if i not in self._slots]

    def chunk_ids(self) -> List[str]:
        return [chunk_id(self.cluster_id, i) for i in range(1, self.expected_count + 1)]

    def first_missing_chunk_id(self, exclude: Iterable[str] = ()) -> Optional[str]:
        """Lowest unfilled slot's chunk ID, skipping IDs in ``exclude``."""
        skipped = set(exclude)
        for index in self.missing_indices():
            candidate = chunk_id(self.cluster_id, index)
            if candidate not in skipped:
                return candidate
        return None

    def _fill(self, index: int, clip: Optional[AudioClip]) -> bool:
        if index in self._slots:
            return False
        self._slots[index] = clip
        return True

    def __repr__(self) -> str:
        return f"ClipCluster({self.cluster_id!r}, {self.clip_count}/{self.expected_count})"


class ClusterHandle:
    """Capability to store the chunks of one registered cluster."""

    def __init__(self, cache: "ClipCache", cluster: ClipCluster):
        self._cache = cache
        self._cluster = cluster

    @property
    def cluster(self) -> ClipCluster:
        return self._cluster

    @property
    def cluster_id(self) -> str:
        return self._cluster.cluster_id

    def store_chunk(self, clip_id: str, clip: Optional[AudioClip]) -> bool:
        """
        Store one chunk at the slot given by its ``_N`` suffix.

        Returns False if the slot was already filled.

        Raises:
            ClusterRegistrationError: If the chunk belongs to another
                cluster or its index is outside 1..expected_count.
        """
        return self._cache._store_chunk(self._cluster, clip_id, clip)


@dataclass
class CacheStats:
    clips: int
    clusters: int
    complete_clusters: int
    hits: int
    misses: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _partition(clip_id: str) -> Tuple[int, Optional[bool], str]:
    return get_speed(clip_id), get_gender(clip_id), remove_accessibility_markers(clip_id)


class ClipCache:
    """
    Thread-safe store of finished clips and clusters.

    Writers are synthesis callbacks; readers are the playback layer and
    the scheduler's high-priority checks. One RLock guards every map.
    """

    def __init__(self, metrics: Optional[PrefetchMetrics] = None):
        self._lock = threading.RLock()
        self._clips: Dict[int, Dict[str, _GenderSlots[Optional[AudioClip]]]] = {}
        self._clusters: Dict[int, Dict[str, _GenderSlots[ClipCluster]]] = {}
        self._metrics = metrics

        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, clip_id: str, clip: Optional[AudioClip]) -> bool:
        """
        Store a finished clip under its full ID (markers included).

        Chunk IDs are routed into their registered cluster. Returns False
        when the key was already written.

        Raises:
            ClusterRegistrationError: For a chunk of an unregistered cluster.
        """
        if is_chunk_id(clip_id):
            return self._cluster_for_chunk(clip_id).store_chunk(clip_id, clip)

        speed, is_male, base = _partition(clip_id)
        with self._lock:
            slots = self._clips.setdefault(speed, {}).setdefault(base, _GenderSlots())
            stored = slots.put(is_male, clip)

        if not stored:
            debug(_LOG, "duplicate_store_ignored", clip_id=clip_id)
            return False

        kind = "silent" if clip is None else "single"
        info(_LOG, "clip_stored", clip_id=clip_id, kind=kind)
        if self._metrics:
            self._metrics.record_store(kind)
        return True

    def store_cluster(self, cluster_id: str, expected_count: int) -> ClusterHandle:
        """
        Register a cluster of ``expected_count`` chunks.

        Registering the same cluster again returns a handle to the
        existing one.

        Raises:
            ClusterRegistrationError: If ``cluster_id`` is itself a chunk
                ID, the count is not positive, or it conflicts with an
                existing registration.
        """
        if is_chunk_id(cluster_id):
            raise ClusterRegistrationError(
                f"cluster id must not carry a chunk suffix: {cluster_id!r}",
                details={"cluster_id": cluster_id},
            )
        if expected_count < 1:
            raise ClusterRegistrationError(
                f"cluster {cluster_id!r} needs at least one chunk, got {expected_count}",
                details={"cluster_id": cluster_id, "expected_count": expected_count},
            )

        speed, is_male, base = _partition(cluster_id)
        with self._lock:
            slots = self._clusters.setdefault(speed, {}).setdefault(base, _GenderSlots())
            found, existing = slots.exact(is_male)
            if found and existing is not None:
                if existing.expected_count != expected_count:
                    raise ClusterRegistrationError(
                        f"cluster {cluster_id!r} already registered with "
                        f"{existing.expected_count} chunks, not {expected_count}",
                        details={"cluster_id": cluster_id},
                    )
                return ClusterHandle(self, existing)
            cluster = ClipCluster(cluster_id, expected_count)
            slots.put(is_male, cluster)

        info(_LOG, "cluster_registered", clip_id=cluster_id, expected=expected_count)
        return ClusterHandle(self, cluster)

    def _cluster_for_chunk(self, clip_id: str) -> ClusterHandle:
        cluster_id = cluster_id_of(clip_id) or ""
        speed, is_male, base = _partition(cluster_id)
        with self._lock:
            slots = self._clusters.get(speed, {}).get(base)
            found, cluster = slots.exact(is_male) if slots else (False, None)
        if not found or cluster is None:
            raise ClusterRegistrationError(
                f"chunk {clip_id!r} arrived for unregistered cluster {cluster_id!r}",
                details={"clip_id": clip_id, "cluster_id": cluster_id},
            )
        return ClusterHandle(self, cluster)

    def _store_chunk(self, cluster: ClipCluster, clip_id: str, clip: Optional[AudioClip]) -> bool:
        index = chunk_index_of(clip_id)
        if not cluster.is_part_of_cluster(clip_id) or index is None:
            raise ClusterRegistrationError(
                f"chunk {clip_id!r} does not belong to cluster {cluster.cluster_id!r}",
                details={"clip_id": clip_id, "cluster_id": cluster.cluster_id},
            )
        if not 1 <= index <= cluster.expected_count:
            raise ClusterRegistrationError(
                f"chunk index {index} outside 1..{cluster.expected_count} for {cluster.cluster_id!r}",
                details={"clip_id": clip_id, "cluster_id": cluster.cluster_id},
            )

        with self._lock:
            stored = cluster._fill(index, clip)
            complete = cluster.is_complete
            count = cluster.clip_count

        if not stored:
            debug(_LOG, "duplicate_store_ignored", clip_id=clip_id)
            return False

        info(
            _LOG, "chunk_stored",
            clip_id=clip_id,
            stored=count,
            expected=cluster.expected_count,
            complete=complete,
        )
        if self._metrics:
            self._metrics.record_store("chunk")
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_clip(
        self,
        base_id: str,
        is_male: Optional[bool] = None,
        *,
        speed: int = Defaults.ACCESSIBILITY_SPEED,
    ) -> Optional[AudioClip]:
        """Single clip for ``base_id``; None (and a log entry) on a miss."""
        base = remove_accessibility_markers(base_id)
        with self._lock:
            slots = self._clips.get(speed, {}).get(base)
            found, clip = slots.lookup(is_male) if slots else (False, None)
        self._record_query(found, base, is_male, speed)
        return clip

    def get_clip_cluster(
        self,
        base_id: str,
        is_male: Optional[bool] = None,
        *,
        speed: int = Defaults.ACCESSIBILITY_SPEED,
    ) -> Optional[List[Optional[AudioClip]]]:
        """Available chunk clips in slot order; None on a miss."""
        cluster = self._find_cluster(base_id, is_male, speed)
        self._record_query(cluster is not None, remove_accessibility_markers(base_id), is_male, speed)
        if cluster is None:
            return None
        with self._lock:
            return cluster.clips()

    def get_cluster_object(
        self,
        base_id: str,
        is_male: Optional[bool] = None,
        *,
        speed: int = Defaults.ACCESSIBILITY_SPEED,
    ) -> Optional[ClipCluster]:
        return self._find_cluster(base_id, is_male, speed)

    def is_cluster(self, base_id: str, *, speed: int = Defaults.ACCESSIBILITY_SPEED) -> bool:
        base = remove_accessibility_markers(base_id)
        with self._lock:
            return base in self._clusters.get(speed, {})

    def is_ready(
        self,
        base_id: str,
        is_male: Optional[bool] = None,
        *,
        speed: int = Defaults.ACCESSIBILITY_SPEED,
    ) -> bool:
        """Single clip: stored (even if None). Cluster: every slot filled."""
        if self.is_cluster(base_id, speed=speed):
            cluster = self._find_cluster(base_id, is_male, speed)
            if cluster is None:
                return False
            with self._lock:
                return cluster.is_complete

        base = remove_accessibility_markers(base_id)
        with self._lock:
            slots = self._clips.get(speed, {}).get(base)
            return slots.lookup(is_male)[0] if slots else False

    def is_cluster_available(
        self,
        base_id: str,
        is_male: Optional[bool] = None,
        *,
        speed: int = Defaults.ACCESSIBILITY_SPEED,
    ) -> bool:
        """At least one chunk stored, complete or not."""
        cluster = self._find_cluster(base_id, is_male, speed)
        if cluster is None:
            return False
        with self._lock:
            return cluster.is_available

    def _find_cluster(self, base_id: str, is_male: Optional[bool], speed: int) -> Optional[ClipCluster]:
        base = remove_accessibility_markers(base_id)
        with self._lock:
            slots = self._clusters.get(speed, {}).get(base)
            if not slots:
                return None
            return slots.lookup(is_male)[1]

    def _record_query(self, hit: bool, base: str, is_male: Optional[bool], speed: int) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1
        if not hit:
            warn(_LOG, "cache_miss", code=ErrorCode.CACHE_MISS, base_id=base, speed=speed, is_male=is_male)
        if self._metrics:
            self._metrics.record_cache_query(hit)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> CacheStats:
        with self._lock:
            clips = sum(len(list(s.values())) for part in self._clips.values() for s in part.values())
            clusters = [c for part in self._clusters.values() for s in part.values() for c in s.values()]
            return CacheStats(
                clips=clips,
                clusters=len(clusters),
                complete_clusters=sum(1 for c in clusters if c.is_complete),
                hits=self._hits,
                misses=self._misses,
            )
